"""Example 02: Streaming results as pages arrive.

This example demonstrates:
- Consuming entries while later pages are still being fetched
- Waiting for the background fetch to finish
- Reading the continuation once the stream is exhausted
"""

from kvindex import IndexClient, KvIndexConfig, Location


def main() -> None:
    config = KvIndexConfig(page_size=10, prefetch_batches=2)
    with IndexClient.local(":memory:", config) as client:
        ns = client.namespace("events")
        for i in range(100):
            kind = "click" if i % 3 else "view"
            client.store.put(Location(ns, f"evt{i:03d}"), {"kind_bin": [kind]})

        query = client.bin_query(ns, "kind", "view", max_results=20)
        with client.execute_streaming(query) as future:
            response = future.result()
            for entry in response:
                print(entry.key)
            future.wait()
            print(f"continuation: {response.continuation!r}")


if __name__ == "__main__":
    main()
