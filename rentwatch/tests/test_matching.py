from rentwatch.core.matching import matches_alert
from rentwatch.core.models import Alert, Listing


def _listing(**overrides) -> Listing:
    fields = {
        "external_id": "https://www.pararius.com/apartment-for-rent/groningen/x1/vismarkt",
        "source": "pararius",
        "url": "https://www.pararius.com/apartment-for-rent/groningen/x1/vismarkt",
        "title": "Apartment Vismarkt",
        "price": 800,
        "bedrooms": 2,
        "city": "Groningen",
    }
    fields.update(overrides)
    return Listing(**fields)


def _alert(**overrides) -> Alert:
    fields = {"id": "a1", "user_id": "u1", "name": "Centrum"}
    fields.update(overrides)
    return Alert(**fields)


def test_price_and_city_bounds():
    alert = _alert(min_price=500, max_price=1000, cities=["Groningen"])
    assert matches_alert(_listing(), alert)
    assert not matches_alert(_listing(price=1200), alert)
    assert not matches_alert(_listing(city="Utrecht"), alert)


def test_alert_without_bounds_matches_everything():
    alert = _alert()
    assert matches_alert(_listing(), alert)
    assert matches_alert(_listing(price=None, bedrooms=None, city=None), alert)


def test_unknown_listing_values_do_not_reject():
    alert = _alert(min_bedrooms=2, min_surface_area=40, property_types=["studio"])
    assert matches_alert(_listing(bedrooms=None, surface_area=None, property_type=None), alert)
    assert not matches_alert(_listing(bedrooms=1), alert)
    assert not matches_alert(_listing(property_type="apartment"), alert)


def test_city_comparison_is_case_insensitive():
    assert matches_alert(_listing(city="groningen "), _alert(cities=["Groningen"]))


def test_sources_postal_codes_and_keywords():
    assert not matches_alert(_listing(), _alert(sources=["kamernet"]))
    assert matches_alert(_listing(postal_code="9711 AB"), _alert(postal_codes=["9711"]))
    assert not matches_alert(_listing(postal_code="9725 CD"), _alert(postal_codes=["9711"]))
    assert matches_alert(_listing(description="Ruim balkon op het zuiden"), _alert(keywords=["balkon"]))
    assert not matches_alert(_listing(), _alert(keywords=["tuin"]))
