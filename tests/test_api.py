"""HTTP surface tests using FastAPI's TestClient."""

import io
import zipfile
from urllib.parse import quote

import pytest
from fastapi.testclient import TestClient

from conftest import GALLERY_URL
from doujin_api.api.main import create_app

PREFIX = "/api/v1/doujins"


@pytest.fixture
def client(settings, source, telegraph, download):
    app = create_app(settings, source=source, telegraph=telegraph, download=download)
    with TestClient(app) as c:
        yield c


def _payload(doujin_id="5", **overrides):
    body = {
        "doujin_id": doujin_id,
        "title": f"Gallery {doujin_id}",
        "url": f"https://example/gallery/{doujin_id}",
        "images": ["https://img.example/a.jpg", "https://img.example/b.jpg"],
        "tags": ["female:fox"],
    }
    body.update(overrides)
    return body


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


class TestFetchEndpoint:
    def test_created_then_reused(self, client, telegraph, gallery):
        first = client.post(f"{PREFIX}/fetch/", json=GALLERY_URL)

        assert first.status_code == 201
        body = first.json()
        assert body["doujin_id"] == "123"
        assert body["telegraph_url"] == "https://telegra.ph/page-1"
        assert first.headers["location"] == f"{PREFIX}/{body['id']}"

        second = client.post(f"{PREFIX}/fetch/", json=GALLERY_URL)

        assert second.status_code == 200
        assert second.json()["id"] == body["id"]
        assert len(telegraph.created) == 2

    def test_percent_encoded_url_is_decoded(self, client, source, gallery):
        resp = client.post(f"{PREFIX}/fetch/", json=quote(GALLERY_URL, safe=""))

        assert resp.status_code == 201
        assert source.scraped == [GALLERY_URL]

    def test_unknown_gallery_is_404(self, client):
        resp = client.post(f"{PREFIX}/fetch/", json="https://example/gallery/404")

        assert resp.status_code == 404
        assert "404" in resp.json()["detail"]

    def test_publish_failure_is_502(self, settings, source, failing_telegraph, gallery):
        app = create_app(settings, source=source, telegraph=failing_telegraph)
        with TestClient(app) as c:
            resp = c.post(f"{PREFIX}/fetch/", json=GALLERY_URL)
        assert resp.status_code == 502


class TestRandomEndpoint:
    def test_no_match_is_404(self, client, source):
        resp = client.post(f"{PREFIX}/random/", json="tag:fox -tag:group")

        assert resp.status_code == 404
        assert source.queries == ['"fox$" -"group$"']

    def test_without_body(self, client, source, gallery):
        source.search[""] = [GALLERY_URL]

        resp = client.post(f"{PREFIX}/random/")

        assert resp.status_code == 201
        assert resp.json()["doujin_id"] == "123"


class TestZipEndpoint:
    def test_download_archive(self, client, gallery):
        record_id = client.post(f"{PREFIX}/fetch/", json=GALLERY_URL).json()["id"]

        resp = client.get(f"{PREFIX}/zip/{record_id}")

        assert resp.status_code == 200
        assert resp.headers["content-type"] == "application/zip"
        assert resp.headers["content-disposition"] == 'attachment; filename="123.zip"'
        with zipfile.ZipFile(io.BytesIO(resp.content)) as zf:
            assert len(zf.namelist()) == 60

    def test_unknown_record(self, client):
        assert client.get(f"{PREFIX}/zip/{'0' * 24}").status_code == 404

    def test_malformed_record_id(self, client):
        assert client.get(f"{PREFIX}/zip/short").status_code == 422


def test_views(client, telegraph):
    telegraph.views["page-1"] = 7

    resp = client.get(f"{PREFIX}/views/{quote('https://telegra.ph/page-1', safe='')}")

    assert resp.status_code == 200
    assert resp.json() == 7


class TestRecordEndpoints:
    def test_crud(self, client):
        created = client.post(PREFIX, json=_payload())
        assert created.status_code == 201
        record_id = created.json()["id"]
        assert len(record_id) == 24

        assert client.post(PREFIX, json=_payload()).status_code == 409
        assert client.get(f"{PREFIX}/{record_id}").json()["title"] == "Gallery 5"
        assert client.get(f"{PREFIX}/doujinId/5").json()["id"] == record_id
        assert client.get(f"{PREFIX}/count").json() == 1
        assert [d["id"] for d in client.get(PREFIX).json()] == [record_id]

        updated = client.put(
            f"{PREFIX}/{record_id}",
            json=_payload(title="Renamed", url="https://elsewhere/5"),
        )
        assert updated.json() == {"ok": True, "id": record_id}
        body = client.get(f"{PREFIX}/{record_id}").json()
        assert body["title"] == "Renamed"
        assert body["url"] == "https://example/gallery/5"

        assert client.delete(f"{PREFIX}/{record_id}").status_code == 204
        assert client.get(f"{PREFIX}/{record_id}").status_code == 404
        assert client.get(f"{PREFIX}/count").json() == 0

    def test_missing_records(self, client):
        assert client.get(f"{PREFIX}/doujinId/nope").status_code == 404
        assert client.put(f"{PREFIX}/{'0' * 24}", json=_payload()).status_code == 404
        assert client.get(f"{PREFIX}/too-short").status_code == 422

    def test_invalid_payload(self, client):
        assert client.post(PREFIX, json={"title": "no ids"}).status_code == 422


def test_stats(client, gallery, source):
    source.search['"fox$"'] = [GALLERY_URL]
    client.post(f"{PREFIX}/random/", json="fox")
    record_id = client.get(f"{PREFIX}/doujinId/123").json()["id"]
    client.get(f"{PREFIX}/zip/{record_id}")

    assert client.get("/api/v1/stats").json() == {
        "total_use": 2,
        "fetch_use": 0,
        "random_use": 1,
        "zip_use": 1,
        "tags": {"positive": {"fox": 1}, "negative": {}},
    }
