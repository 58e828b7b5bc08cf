import asyncio
import json

import pytest

from talkar.pipeline.catalog import ProductCatalog


class TestProductCatalog:

    def test_loads_file_lazily(self, tmp_path):
        path = tmp_path / "meta.json"
        path.write_text(json.dumps([{"image_id": "poster_01", "product_name": "Cold Brew"}]))

        catalog = ProductCatalog(str(path))
        assert catalog.get("poster_01")["product_name"] == "Cold Brew"
        assert catalog.get("poster_02") is None
        assert catalog.get(None) is None

    def test_missing_file_is_empty(self, tmp_path):
        catalog = ProductCatalog(str(tmp_path / "nope.json"))
        assert catalog.all() == []

    def test_bad_json_is_empty(self, tmp_path):
        path = tmp_path / "meta.json"
        path.write_text("{not json")
        assert ProductCatalog(str(path)).all() == []

    def test_reload_picks_up_changes(self, tmp_path):
        path = tmp_path / "meta.json"
        path.write_text(json.dumps([{"image_id": "a"}]))
        catalog = ProductCatalog(str(path))
        assert len(catalog.all()) == 1

        path.write_text(json.dumps([{"image_id": "a"}, {"image_id": "b"}]))
        catalog.reload()
        assert catalog.get("b") == {"image_id": "b"}

    def test_returned_records_are_copies(self):
        catalog = ProductCatalog(records=[{"image_id": "a", "tone": "happy"}])
        catalog.get("a")["tone"] = "serious"
        assert catalog.get("a")["tone"] == "happy"

    @pytest.mark.asyncio
    async def test_lookup_reads_file_in_worker_thread(self, tmp_path, monkeypatch):
        path = tmp_path / "meta.json"
        path.write_text(json.dumps([{"image_id": "poster_01", "product_name": "Cold Brew"}]))
        offloaded = []
        to_thread = asyncio.to_thread

        async def spy(func, *args, **kwargs):
            offloaded.append(func)
            return await to_thread(func, *args, **kwargs)

        monkeypatch.setattr(asyncio, "to_thread", spy)
        catalog = ProductCatalog(str(path))

        assert (await catalog.lookup("poster_01"))["product_name"] == "Cold Brew"
        assert await catalog.lookup("poster_02") is None
        assert len(offloaded) == 1
