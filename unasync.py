#!venv/bin/python
import os
import re
import sys

SUBS = [
    ("async def", "def"),
    ("async with", "with"),
    ("await ", ""),
    ("async for", "for"),
    ("AsyncIterator", "Iterator"),
    ("AsyncIterable", "Iterable"),
    ("RestartableAsyncIterable", "RestartableIterable"),
    ("AsyncBaseStore", "BaseStore"),
    ("AsyncInMemoryStore", "InMemoryStore"),
    ("AsyncSQLiteStore", "SQLiteStore"),
    ("AsyncRedisStore", "RedisStore"),
    ("FakeAsyncRedis", "FakeRedis"),
    ("AsyncCacheHeadersEngine", "CacheHeadersEngine"),
    ("AsyncStoreKeyAccessor", "StoreKeyAccessor"),
    ("AsyncLock", "Lock"),
    ("AsyncETagInjector", "ETagInjector"),
    ("AsyncDefaultETagInjector", "DefaultETagInjector"),
    ("AsyncLastModifiedInjector", "LastModifiedInjector"),
    ("AsyncDefaultLastModifiedInjector", "DefaultLastModifiedInjector"),
    ("import redis.asyncio as redis", "import redis"),
    ("from cacheheaders._async._storages", "from cacheheaders._sync._storages"),
    ("from cacheheaders._async._engine", "from cacheheaders._sync._engine"),
    ("from cacheheaders._async._injectors", "from cacheheaders._sync._injectors"),
    ("aclose", "close"),
    ("AsyncCallNext", "CallNext"),
    ("*@pytest.mark.anyio", ""),
    ("aprint_validators_table", "print_validators_table"),
    ("anysqlite", "sqlite3"),
]
COMPILED_SUBS = [(re.compile(r"(^|\b)" + regex + r"($|\b)"), repl) for regex, repl in SUBS]

# (async source, generated sync copy)
TREES = [
    ("cacheheaders/_async", "cacheheaders/_sync"),
    ("tests/_async", "tests/_sync"),
]

# Lines between these markers (and one blank line after the end marker)
# only exist in the async code.
ASYNC_ONLY_START = "# unasync: async-only"
ASYNC_ONLY_END = "# unasync: end"

USED_SUBS = set()


def unasync_line(line):
    for index, (regex, repl) in enumerate(COMPILED_SUBS):
        new_line = regex.sub(repl, line)
        if new_line != line:
            USED_SUBS.add(index)
            line = new_line
    return line


def strip_async_only(lines):
    skipping = False
    skip_blank = False
    for line in lines:
        stripped = line.strip()
        if stripped == ASYNC_ONLY_START:
            skipping = True
            continue
        if stripped == ASYNC_ONLY_END:
            skipping = False
            skip_blank = True
            continue
        if skip_blank:
            skip_blank = False
            if not stripped:
                continue
        if not skipping:
            yield line


def unasync_source(source):
    return "".join(unasync_line(line) for line in strip_async_only(source.splitlines(keepends=True)))


def iter_tree(in_dir, out_dir):
    for dirpath, _, filenames in os.walk(in_dir):
        rel_dir = os.path.relpath(dirpath, in_dir)
        for filename in sorted(filenames):
            if filename.endswith(".py"):
                yield (
                    os.path.normpath(os.path.join(in_dir, rel_dir, filename)),
                    os.path.normpath(os.path.join(out_dir, rel_dir, filename)),
                )


def main():
    check_only = "--check" in sys.argv
    outdated = []

    for in_dir, out_dir in TREES:
        for in_path, out_path in iter_tree(in_dir, out_dir):
            with open(in_path) as in_file:
                expected = unasync_source(in_file.read())

            if check_only:
                try:
                    with open(out_path) as out_file:
                        actual = out_file.read()
                except FileNotFoundError:
                    actual = None
                if actual != expected:
                    outdated.append(out_path)
                continue

            print(in_path, "->", out_path)
            os.makedirs(os.path.dirname(out_path), exist_ok=True)
            with open(out_path, "w", newline="") as out_file:
                out_file.write(expected)

    if outdated:
        print("The sync code is out of date, run `python unasync.py`:")
        for path in outdated:
            print(f"  {path}")
        sys.exit(1)

    unused_subs = [sub for index, sub in enumerate(SUBS) if index not in USED_SUBS]
    if unused_subs:
        print("These substitutions were never used:")
        for sub in unused_subs:
            print(f"  {sub!r}")
        sys.exit(1)


if __name__ == "__main__":
    main()
