from __future__ import annotations

from ._utils import iter_source_files, matches_prefix, parse_imports


def test_direct_rich_imports_are_limited_to_console() -> None:
    allowlist = {"output/console.py"}

    offenders: list[str] = []
    for rel, file_path in iter_source_files():
        if rel in allowlist:
            continue
        for item in parse_imports(file_path):
            if matches_prefix(item.module, "rich"):
                offenders.append(f"{rel}:{item.line}: direct rich import '{item.module}'")

    assert not offenders, "Direct rich usage policy violations:\n" + "\n".join(offenders)
