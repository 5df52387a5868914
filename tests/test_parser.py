import datetime as dt
from decimal import Decimal

from astrowatcher import parser
from astrowatcher.parser import (
    has_listing_marker,
    parse_date,
    parse_listings,
    parse_price,
    resolve_url,
)


def listing_table(
    ad_number: str = "12345",
    color: str = "#EBEBEB",
    href: str = "adview.php?id=12345",
    price: str = "£1,250.00",
    date: str = "03/02/2024",
    photo: bool = True,
    cells: int = 8,
) -> str:
    photo_cell = '<img src="/images/camera.gif">' if photo else ""
    values = [
        f'<a href="{href}">{ad_number}</a>',
        '<a href="type.php">For Sale</a>',
        "Available",
        photo_cell,
        "Celestron C8 telescope, excellent condition",
        price,
        date,
        "Leeds",
    ]
    row = "".join(f"<td>{value}</td>" for value in values[:cells])
    return (
        f'<table border="1" cellspacing="1" cellpadding="2" '
        f'style="border-collapse: collapse" bgcolor="{color}">'
        f"<tr>{row}</tr></table>"
    )


def page(*tables: str) -> str:
    return "<html><body>" + "".join(tables) + "</body></html>"


def test_parse_listings_extracts_regular_listing():
    records = parse_listings(page(listing_table()), 2)

    assert len(records) == 1
    record = records[0]
    assert record.id == "2_12345"
    assert record.ad_number == "12345"
    assert record.ad_type == "For Sale"
    assert record.status == "Available"
    assert record.has_photo is True
    assert record.price == Decimal("1250.00")
    assert record.price_text == "£1,250.00"
    assert record.date == dt.date(2024, 2, 3)
    assert record.location == "Leeds"
    assert record.is_featured is False
    assert record.listing_url == "https://www.astrobuysell.com/uk/adview.php?id=12345"
    assert record.page_number == 2


def test_parse_listings_marks_featured_by_background_color():
    html = page(
        listing_table(ad_number="1", color="#FFF87A"),
        listing_table(ad_number="2", color="#ebebeb"),
    )
    records = parse_listings(html, 0)

    assert [r.is_featured for r in records] == [True, False]


def test_parse_listings_ignores_unrelated_tables():
    unrelated = (
        '<table border="1" cellspacing="1" cellpadding="2" '
        'style="border-collapse: collapse" bgcolor="#FFFFFF">'
        "<tr><td>menu</td></tr></table>"
        "<table><tr><td>layout</td></tr></table>"
    )
    records = parse_listings(page(unrelated, listing_table()), 0)

    assert [r.ad_number for r in records] == ["12345"]


def test_parse_listings_skips_short_rows(caplog):
    html = page(
        listing_table(ad_number="1", cells=6),
        listing_table(ad_number="2"),
    )
    with caplog.at_level("WARNING"):
        records = parse_listings(html, 0)

    assert [r.ad_number for r in records] == ["2"]
    assert "only 6 columns" in caplog.text


def test_parse_listings_returns_empty_for_page_without_listings():
    assert parse_listings("<html><body><p>No ads</p></body></html>", 4) == []


def test_parse_listings_handles_missing_photo_and_poa():
    records = parse_listings(page(listing_table(photo=False, price="POA")), 0)

    assert records[0].has_photo is False
    assert records[0].price is None
    assert records[0].price_text == "POA"


def test_parse_price_variants():
    assert parse_price("£1,250") == Decimal("1250")
    assert parse_price("Price: 99.50 ono") == Decimal("99.50")
    assert parse_price("Contact seller") is None
    assert parse_price("poa") is None
    assert parse_price("") is None
    assert parse_price("free to good home") is None


def test_parse_date_prefers_day_first():
    assert parse_date("05/06/2023") == dt.date(2023, 6, 5)
    assert parse_date("5/6/2023") == dt.date(2023, 6, 5)
    assert parse_date("2023-06-05") == dt.date(2023, 6, 5)
    assert parse_date("Posted 12 March 2024") is None
    assert parse_date("12 March 2024") == dt.date(2024, 3, 12)


def test_parse_date_rejects_impossible_dates():
    assert parse_date("31/02/2024") is None
    assert parse_date("not a date") is None
    assert parse_date("") is None


def test_resolve_url_variants():
    assert resolve_url("https://example.com/ad") == "https://example.com/ad"
    assert resolve_url("/uk/adview.php?id=1") == "https://www.astrobuysell.com/uk/adview.php?id=1"
    assert resolve_url("adview.php?id=1") == "https://www.astrobuysell.com/uk/adview.php?id=1"
    assert resolve_url("") is None


def test_has_listing_marker():
    assert has_listing_marker("<html><table></table></html>")
    assert not has_listing_marker("<html><div></div></html>")


def test_parse_listings_skips_container_on_unexpected_error(monkeypatch, caplog):
    real_parse_price = parser.parse_price

    def flaky_price(text):
        if text == "£13":
            raise RuntimeError("unexpected markup")
        return real_parse_price(text)

    monkeypatch.setattr(parser, "parse_price", flaky_price)
    html = page(
        listing_table(ad_number="1", price="£13"),
        listing_table(ad_number="2", price="£20"),
    )

    with caplog.at_level("ERROR"):
        records = parse_listings(html, 3)

    assert [r.ad_number for r in records] == ["2"]
    assert records[0].price == Decimal("20")
    assert "Error parsing listing table 1 on page 3" in caplog.text
