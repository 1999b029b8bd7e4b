from datetime import date

import requests

from config import ScraperConfig
from models import TransactionKind
from scraper import RealtorScraper


class FakeResponse:
    def __init__(self, payload):
        self.payload = payload

    def raise_for_status(self):
        pass

    def json(self):
        return self.payload


class FakeSession:
    """Serves pages from ``pages[(city, transaction_type_id, page)]``."""

    def __init__(self, pages, total_pages=None, failing=()):
        self.headers = {}
        self.pages = pages
        self.total_pages = total_pages or {}
        self.failing = set(failing)
        self.posts = []

    def post(self, url, data=None, timeout=None):
        self.posts.append(data)
        segment = (data.get("LocationSearchString"), data["TransactionTypeId"])
        page = int(data["CurrentPage"])
        if segment in self.failing:
            raise requests.ConnectionError("blocked")
        results = self.pages.get(segment + (page,), [])
        return FakeResponse({
            "Results": results,
            "Paging": {"TotalPages": self.total_pages.get(segment, 0)},
        })


def item(mls, price="$500,000", address="12 KING ST|Cambridge, Ontario N1R 1A1", **extra):
    data = {
        "MlsNumber": mls,
        "Property": {"Price": price, "Address": {"AddressText": address}, "Type": "Single Family"},
        "Building": {"Bedrooms": "3", "BathroomTotal": "2"},
        "RelativeDetailsURL": f"/real-estate/{mls}",
    }
    data.update(extra)
    return data


def make_scraper(session, cities=("Cambridge, ON",), kinds=("sale",), **kwargs):
    config = ScraperConfig(
        cities=list(cities),
        transaction_kinds=kinds,
        max_pages_per_city=5,
        max_retries=1,
        **kwargs,
    )
    return RealtorScraper(config, session=session, sleep=lambda seconds: None)


def test_parse_listing():
    scraper = make_scraper(FakeSession({}))
    record = scraper.parse_listing(
        item("X123", InsertedDateUTC="638408736000000000", Land={"SizeTotal": "50 x 120 FT"}),
        "sale",
    )

    assert record.key == "X123"
    assert record.price == 500000
    assert record.transaction_kind == TransactionKind.SALE
    assert record.bedrooms == "3"
    assert record.bathrooms == "2"
    assert record.lot_size == "50 x 120 FT"
    assert record.property_type == "Single Family"
    assert record.url == "https://www.realtor.ca/real-estate/X123"
    assert record.listed_date == date(2024, 1, 15)
    assert record.street_address == "12 KING ST"
    assert record.city == "Cambridge"
    assert record.postal_code == "N1R1A1"
    assert record.first_seen is None


def test_parse_listing_prefers_explicit_postal_code():
    scraper = make_scraper(FakeSession({}))
    record = scraper.parse_listing(item("X1", PostalCode="n3h 4r7"), "rent")

    assert record.postal_code == "N3H4R7"
    assert record.transaction_kind == TransactionKind.RENT


def test_request_shape():
    session = FakeSession({("Cambridge, ON", "3", 1): [item("A")]})
    scraper = make_scraper(session, kinds=("rent",))

    list(scraper.iter_pages())

    sent = session.posts[0]
    assert sent["TransactionTypeId"] == "3"
    assert sent["LocationSearchString"] == "Cambridge, ON"
    assert sent["RecordsPerPage"] == "200"
    assert sent["Sort"] == "6-D"
    assert "User-Agent" in session.headers


def test_only_the_final_page_is_flagged_last():
    session = FakeSession({
        ("Cambridge, ON", "2", 1): [item("A"), item("B")],
        ("Cambridge, ON", "2", 2): [item("C")],
        ("Cambridge, ON", "3", 1): [item("D")],
    })
    scraper = make_scraper(session, kinds=("sale", "rent"))

    batches = list(scraper.iter_batches())

    assert [[r.key for r in batch] for batch, _ in batches] == [["A", "B"], ["C"], ["D"]]
    assert [is_last for _, is_last in batches] == [False, False, True]
    assert scraper.complete


def test_stops_at_total_pages():
    session = FakeSession(
        {("Cambridge, ON", "2", page): [item(f"P{page}")] for page in range(1, 5)},
        total_pages={("Cambridge, ON", "2"): 2},
    )
    scraper = make_scraper(session)

    keys = [r.key for batch in scraper.iter_pages() for r in batch]

    assert keys == ["P1", "P2"]


def test_duplicate_keys_across_pages_are_dropped():
    session = FakeSession({
        ("Cambridge, ON", "2", 1): [item("A"), item("B")],
        ("Cambridge, ON", "2", 2): [item("B"), item("C")],
    })
    scraper = make_scraper(session)

    keys = [r.key for batch in scraper.iter_pages() for r in batch]

    assert keys == ["A", "B", "C"]


def test_failed_segment_marks_scrape_incomplete():
    session = FakeSession(
        {("Ajax, ON", "2", 1): [item("A")]},
        failing={("Cambridge, ON", "2")},
    )
    scraper = make_scraper(session, cities=("Cambridge, ON", "Ajax, ON"))

    batches = list(scraper.iter_batches())

    assert [[r.key for r in batch] for batch, _ in batches] == [["A"]]
    assert batches[-1][1] is True
    assert not scraper.complete
    assert scraper.failed_segments == ["Cambridge, ON:sale"]
    # One initial attempt plus one retry for the blocked segment.
    assert sum(1 for sent in session.posts if sent["LocationSearchString"] == "Cambridge, ON") == 2


def test_no_results_yields_nothing():
    scraper = make_scraper(FakeSession({}))
    assert list(scraper.iter_batches()) == []
