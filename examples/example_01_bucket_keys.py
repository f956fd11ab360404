"""Example 01: Listing keys and paging through an index.

This example demonstrates:
- Indexing objects in a local store
- Listing every key in a bucket through the $bucket index
- Paging an integer range query with max_results and continuations
"""

from kvindex import IndexClient, Location


def main() -> None:
    with IndexClient.local(":memory:") as client:
        ns = client.namespace("users")
        for i in range(25):
            client.store.put(
                Location(ns, f"user{i:02d}"),
                {"age_int": [18 + i], "email_bin": [f"user{i:02d}@example.com"]},
            )

        keys = client.execute(client.bucket_query(ns))
        print(f"{len(keys)} keys in {ns}")

        query = client.int_query(ns, "age", start=20, end=40, return_terms=True, max_results=8)
        page = client.execute(query)
        page_no = 1
        while True:
            print(f"page {page_no}: {[(e.key, e.term) for e in page.entries]}")
            if not page.has_continuation:
                break
            page = client.execute(query.with_continuation(page.continuation))
            page_no += 1


if __name__ == "__main__":
    main()
