from unittest.mock import MagicMock, patch

import requests

from clients.artic_client import search_art_institute
from clients.met_museum_client import score_match, search_met_museum, search_queries
from clients.wikipedia_client import artist_from_extract, search_wikipedia, style_from_extract, year_from_extract
from state.artwork_schema import ArtworkRecord, RecognitionCandidate

SUNFLOWERS = RecognitionCandidate(artwork_name="Sunflowers", artist="Vincent van Gogh")


def _response(payload, status=200):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = payload
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status}")
    return resp


def test_met_scoring():
    exact = ArtworkRecord(title="Sunflowers", artist="Vincent van Gogh")
    partial = ArtworkRecord(title="Sunflowers (study)", artist="Van Gogh")
    wrong = ArtworkRecord(title="Irises", artist="Claude Monet")

    assert score_match(SUNFLOWERS, exact) == 5
    assert score_match(SUNFLOWERS, partial) == 2
    assert score_match(SUNFLOWERS, wrong) == -1


def test_met_queries_include_aliases():
    queries = search_queries(RecognitionCandidate(artwork_name="Mona Lisa", artist="Leonardo da Vinci"))
    assert queries[0] == "Mona Lisa"
    assert "La Gioconda" in queries


def test_met_picks_best_scored_object():
    objects = {
        "1": {"title": "Sunflower Seeds", "artistDisplayName": "Unknown"},
        "2": {"title": "Sunflowers", "artistDisplayName": "Vincent van Gogh", "objectDate": "ca. 1887"},
    }

    def fake_get(url, params=None, timeout=None):
        if params is not None:
            return _response({"objectIDs": [1, 2]})
        return _response(objects[url.rsplit("/", 1)[-1]])

    with patch("clients.met_museum_client.requests.get", side_effect=fake_get):
        record = search_met_museum(SUNFLOWERS)

    assert record.title == "Sunflowers"
    assert record.year == "1887"
    assert record.sources == ["https://www.metmuseum.org/art/collection/search/2"]


def test_met_network_failure_returns_none():
    with patch("clients.met_museum_client.requests.get", side_effect=requests.ConnectionError("offline")):
        assert search_met_museum(SUNFLOWERS) is None


def test_art_institute_record():
    search = _response({"data": [{"id": 27992}]})
    detail = _response({"data": {
        "title": "A Sunday on La Grande Jatte",
        "artist_display": "Georges Seurat",
        "date_display": "c. 1884",
        "style_title": "Pointillism",
        "image_id": "abc",
    }})
    with patch("clients.artic_client.requests.get", side_effect=[search, detail]):
        record = search_art_institute(RecognitionCandidate(artwork_name="La Grande Jatte"))

    assert record.artist == "Georges Seurat"
    assert record.year == "1884"
    assert record.museum == "Art Institute of Chicago"
    assert record.image_url.startswith("https://www.artic.edu/iiif/2/abc/")


def test_art_institute_no_hits():
    with patch("clients.artic_client.requests.get", return_value=_response({"data": []})):
        assert search_art_institute(SUNFLOWERS) is None


def test_wikipedia_extract_heuristics():
    extract = "The Night Watch is a painting by Rembrandt, completed in 1642, in the Baroque period."
    assert artist_from_extract(extract) == "Rembrandt"
    assert year_from_extract(extract) == "1642"
    assert style_from_extract(extract) == "Baroque"
    assert year_from_extract("No date here.") is None


def test_wikipedia_summary():
    page = _response({
        "title": "Sunflowers (Van Gogh series)",
        "extract": "Sunflowers is a series of still life paintings painted in 1888.",
        "content_urls": {"desktop": {"page": "https://en.wikipedia.org/wiki/Sunflowers_(Van_Gogh_series)"}},
    })
    with patch("clients.wikipedia_client.requests.get", return_value=page):
        record = search_wikipedia(SUNFLOWERS)

    assert record.artist == "Vincent van Gogh"
    assert record.year == "1888"
    assert record.sources == ["https://en.wikipedia.org/wiki/Sunflowers_(Van_Gogh_series)"]


def test_wikipedia_missing_page():
    with patch("clients.wikipedia_client.requests.get", return_value=_response({}, status=404)):
        assert search_wikipedia(SUNFLOWERS) is None
