"""
Tests for the row codec and the store adapters.
"""

import asyncio
import json
import shutil
from datetime import time

import pendulum
import pytest
import requests

from salonboard.adapters.mock_store import DEFAULT_DATA_FILE, MockSchedulingStore
from salonboard.adapters.rest_store import RestSchedulingStore
from salonboard.adapters.rows import item_from_row, item_to_row, items_from_rows, resource_from_row
from salonboard.domain.exceptions import StoreError, ValidationError
from salonboard.domain.models import DateRange, ItemKind, ScheduleItem

WEEK = DateRange.week_of("2024-11-25")


class TestRows:
    """Tests for converting store rows."""

    def test_booking_row(self):
        """Test a date + start_time row with client and service."""
        item = item_from_row({
            "id": 7, "stylist_id": "anna", "date": "2024-11-25", "start_time": "09:00",
            "duration": 60, "client": "Lena Schulz", "service": "Schnitt",
        })

        assert item.id == "7"
        assert item.start_time == time(9, 0)
        assert (item.label, item.subtitle) == ("Lena Schulz", "Schnitt")
        assert item.persisted

    def test_start_datetime_is_converted_to_salon_timezone(self):
        """Test that a UTC timestamp is shown in local time."""
        item = item_from_row({
            "id": "x", "stylist_id": "caro", "start_datetime": "2024-11-26T12:30:00Z",
            "duration_minutes": 90, "first_name": "Sophie", "last_name": "Wagner",
        }, timezone="Europe/Berlin")

        assert item.date == pendulum.date(2024, 11, 26)
        assert item.start_time == time(13, 30)
        assert item.label == "Sophie Wagner"

    def test_shift_row(self):
        """Test the kind column."""
        item = item_from_row({"id": "s1", "stylist_id": "anna", "date": "2024-11-29",
                              "start_time": "09:00", "duration": 240, "kind": "shift"})

        assert item.kind is ItemKind.SHIFT

    def test_missing_columns_raise(self):
        """Test that incomplete rows are rejected."""
        with pytest.raises(ValidationError, match="missing column"):
            item_from_row({"id": "x", "stylist_id": "anna", "date": "2024-11-25", "start_time": "09:00"})
        with pytest.raises(ValidationError):
            item_from_row({"id": "x", "date": "2024-11-25", "start_time": "09:00", "duration": 30})
        with pytest.raises(ValidationError):
            resource_from_row({"name": "Anna"})

    def test_inactive_and_broken_rows_are_skipped(self):
        """Test that cancelled bookings and malformed rows do not load."""
        rows = [
            {"id": "a", "stylist_id": "anna", "date": "2024-11-25", "start_time": "09:00", "duration": 30},
            {"id": "b", "stylist_id": "anna", "date": "2024-11-25", "start_time": "10:00", "duration": 30,
             "status": "cancelled"},
            {"id": "c", "stylist_id": "anna", "date": "2024-11-25", "start_time": "kaputt", "duration": 30},
        ]

        assert [item.id for item in items_from_rows(rows)] == ["a"]

    def test_item_to_row(self):
        """Test the outgoing row format."""
        item = ScheduleItem(id="a", resource_id="anna", date="2024-11-25", start_time="09:05",
                            duration_minutes=30, label="Lena", kind="shift")

        assert item_to_row(item) == {
            "id": "a", "stylist_id": "anna", "date": "2024-11-25", "start_time": "09:05",
            "duration": 30, "label": "Lena", "subtitle": "", "kind": "shift",
        }


class TestMockSchedulingStore:
    """Tests for the JSON-backed mock store."""

    def test_default_data(self):
        """Test the bundled demo week."""
        store = MockSchedulingStore()

        resources = asyncio.run(store.load_resources())
        items = asyncio.run(store.load_items([r.id for r in resources], WEEK))

        assert [r.id for r in resources] == ["anna", "ben", "caro"]
        ids = [item.id for item in items]
        assert "b6" not in ids
        assert {"b1", "b2", "b5", "s1"} <= set(ids)
        b5 = next(item for item in items if item.id == "b5")
        assert b5.start_time == time(13, 30)

    def test_load_items_filters_stylists_and_dates(self):
        """Test that only requested stylists within the range are returned."""
        store = MockSchedulingStore()

        items = asyncio.run(store.load_items(["ben"], DateRange.single("2024-11-25")))

        assert [item.id for item in items] == ["b4"]

    def test_missing_file_means_empty_store(self, tmp_path):
        """Test that a non-existent data file starts empty."""
        store = MockSchedulingStore(data_file=tmp_path / "nope.json")

        assert asyncio.run(store.load_resources()) == []

    def test_broken_file_raises(self, tmp_path):
        """Test that unreadable JSON is a store error."""
        broken = tmp_path / "broken.json"
        broken.write_text("{not json", encoding="utf-8")

        with pytest.raises(StoreError):
            MockSchedulingStore(data_file=broken)

    def test_fail_next(self):
        """Test scripted write failures."""
        store = MockSchedulingStore()
        store.fail_next(message="offline")

        with pytest.raises(StoreError, match="offline"):
            asyncio.run(store.delete_item("b1"))
        asyncio.run(store.delete_item("b1"))
        assert "b1" not in store.items

    def test_upsert_assigns_id_and_writes_back(self, tmp_path):
        """Test that new items get a store id and are written to the file."""
        data_file = tmp_path / "data.json"
        shutil.copy(DEFAULT_DATA_FILE, data_file)
        store = MockSchedulingStore(data_file=data_file, write_back=True)
        new = ScheduleItem(id="local-1", resource_id="ben", date="2024-11-26", start_time="10:00",
                           duration_minutes=30, persisted=False)

        stored = asyncio.run(store.upsert_item(new))

        assert stored.id == "m1"
        assert stored.persisted
        written = json.loads(data_file.read_text(encoding="utf-8"))
        assert "m1" in [row["id"] for row in written["items"]]
        assert MockSchedulingStore(data_file=data_file).items["m1"].resource_id == "ben"


    def test_failed_write_back_leaves_items_unchanged(self, tmp_path):
        """Test that an item change is undone in memory when the data file cannot be written."""
        store = MockSchedulingStore(data_file=tmp_path / "data.json", write_back=True)
        item = ScheduleItem(id="a", resource_id="anna", date="2024-11-25", start_time="09:00",
                            duration_minutes=30)
        asyncio.run(store.upsert_item(item))
        store.data_file = tmp_path  # a directory cannot be opened for writing

        with pytest.raises(StoreError):
            asyncio.run(store.upsert_item(ScheduleItem(id="a", resource_id="ben", date="2024-11-25",
                                                       start_time="10:00", duration_minutes=30)))
        with pytest.raises(StoreError):
            asyncio.run(store.upsert_item(ScheduleItem(id="local-1", resource_id="ben", date="2024-11-25",
                                                       start_time="12:00", duration_minutes=30,
                                                       persisted=False)))
        with pytest.raises(StoreError):
            asyncio.run(store.delete_item("a"))

        assert list(store.items) == ["a"]
        assert store.items["a"].resource_id == "anna"


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.content = b"" if payload is None else json.dumps(payload).encode()

    def json(self):
        return json.loads(self.content)

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")


class FakeBackend:
    """Records requests and answers from a queue."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return self.responses.pop(0)


@pytest.fixture
def backend(monkeypatch):
    def install(*responses):
        fake = FakeBackend(*responses)
        monkeypatch.setattr("salonboard.adapters.rest_store.requests.request", fake)
        return fake
    return install


class TestRestSchedulingStore:
    """Tests for the REST store adapter."""

    def test_requires_base_url(self):
        """Test that an unconfigured backend is reported."""
        with pytest.raises(StoreError):
            RestSchedulingStore(base_url="")

    def test_fetch_resources_with_token(self, backend):
        """Test the stylist endpoint and the bearer header."""
        fake = backend(FakeResponse(payload={"data": [{"id": "anna", "name": "Anna", "color": "#FFA000"}]}))
        store = RestSchedulingStore("https://salon.example/api/", api_token="secret")

        resources = asyncio.run(store.load_resources())

        assert resources[0].name == "Anna"
        method, url, kwargs = fake.calls[0]
        assert (method, url) == ("GET", "https://salon.example/api/stylists")
        assert kwargs["headers"]["Authorization"] == "Bearer secret"

    def test_fetch_items_sends_range(self, backend):
        """Test query parameters and filtering of cancelled rows."""
        fake = backend(FakeResponse(payload=[
            {"id": 1, "stylist_id": "anna", "date": "2024-11-25", "start_time": "09:00", "duration": 60},
            {"id": 2, "stylist_id": "anna", "date": "2024-11-25", "start_time": "11:00", "duration": 60,
             "status": "cancelled"},
        ]))
        store = RestSchedulingStore("https://salon.example/api")

        items = asyncio.run(store.load_items(["anna", "ben"], WEEK))

        assert [item.id for item in items] == ["1"]
        assert fake.calls[0][2]["params"] == {"resource_ids": "anna,ben", "from": "2024-11-25", "to": "2024-12-01"}

    def test_fetch_items_without_stylists_skips_request(self, backend):
        """Test that an empty roster does not hit the backend."""
        fake = backend()
        store = RestSchedulingStore("https://salon.example/api")

        assert store.fetch_items([], WEEK) == []
        assert fake.calls == []

    def test_create_posts_without_id(self, backend):
        """Test that new items are POSTed and take the server id."""
        fake = backend(FakeResponse(201, {"id": 99, "stylist_id": "anna", "date": "2024-11-25",
                                          "start_time": "09:00", "duration": 30}))
        store = RestSchedulingStore("https://salon.example/api")
        new = ScheduleItem(id="local-1", resource_id="anna", date="2024-11-25", start_time="09:00",
                           duration_minutes=30, persisted=False)

        stored = asyncio.run(store.upsert_item(new))

        assert stored.id == "99"
        method, url, kwargs = fake.calls[0]
        assert (method, url) == ("POST", "https://salon.example/api/schedule_items")
        assert "id" not in kwargs["json"]

    def test_update_puts_and_accepts_empty_body(self, backend):
        """Test PUT of a stored item answered with 204."""
        fake = backend(FakeResponse(204))
        store = RestSchedulingStore("https://salon.example/api")
        item = ScheduleItem(id="5", resource_id="anna", date="2024-11-25", start_time="09:00", duration_minutes=30)

        assert asyncio.run(store.upsert_item(item)) == item
        assert fake.calls[0][:2] == ("PUT", "https://salon.example/api/schedule_items/5")

    def test_delete_of_missing_item_is_ok(self, backend):
        """Test that a 404 on delete is not an error."""
        backend(FakeResponse(404))
        store = RestSchedulingStore("https://salon.example/api")

        asyncio.run(store.delete_item("5"))

    def test_http_error_becomes_store_error(self, backend):
        """Test that backend failures surface as StoreError."""
        backend(FakeResponse(500))
        store = RestSchedulingStore("https://salon.example/api")

        with pytest.raises(StoreError, match="500"):
            store.fetch_resources()

    def test_connection_error_becomes_store_error(self, monkeypatch):
        """Test that network failures surface as StoreError."""
        def refuse(*args, **kwargs):
            raise requests.ConnectionError("connection refused")

        monkeypatch.setattr("salonboard.adapters.rest_store.requests.request", refuse)
        store = RestSchedulingStore("https://salon.example/api")

        with pytest.raises(StoreError, match="connection refused"):
            store.fetch_resources()
