from __future__ import annotations

from pathlib import Path

import pytest

from tickets_backend.security import new_asset_name, normalize_asset_name, safe_join


def test_new_asset_name_is_random_hex_png() -> None:
    names = {new_asset_name() for _ in range(200)}
    assert len(names) == 200
    for name in names:
        assert normalize_asset_name(name) == name
        assert name.endswith(".png")


@pytest.mark.parametrize(
    "name",
    ["", "logo.png", "../" + "a" * 32 + ".png", "a" * 32 + ".png/..", "a" * 31 + ".png", "A" * 32],
)
def test_normalize_asset_name_rejects(name: str) -> None:
    with pytest.raises(ValueError):
        normalize_asset_name(name)


def test_safe_join(tmp_path: Path) -> None:
    assert safe_join(tmp_path, "x.png") == (tmp_path / "x.png").resolve()
    with pytest.raises(ValueError):
        safe_join(tmp_path, "..", "x.png")
