import pytest

from agents.verification_agent import VerificationAgent, candidates_for
from state.artwork_schema import ArtworkRecord, NarrationBundle


def _bundle(**overrides):
    data = dict(title="The Great Wave off Kanagawa", artist="Katsushika Hokusai", narration="...", confidence=0.6)
    data.update(overrides)
    return NarrationBundle(**data)


class RecordingSource:
    def __init__(self, name, result=None, error=None):
        self.name = name
        self.result = result
        self.error = error
        self.calls = []

    def __call__(self, candidate):
        self.calls.append(candidate)
        if self.error:
            raise self.error
        return self.result


def _agent(*sources):
    return VerificationAgent(sources=[(s.name, s) for s in sources])


def test_candidates_with_and_without_artist():
    candidates = candidates_for(_bundle())
    assert [(c.artwork_name, c.artist) for c in candidates] == [
        ("The Great Wave off Kanagawa", "Katsushika Hokusai"),
        ("The Great Wave off Kanagawa", None),
    ]


def test_unknown_artist_gives_single_candidate():
    candidates = candidates_for(_bundle(artist="未知艺术家"))
    assert [(c.artwork_name, c.artist) for c in candidates] == [("The Great Wave off Kanagawa", None)]


@pytest.mark.parametrize("title", ["无法识别", "印象派风格作品", "Impressionist style landscape"])
def test_unresolved_and_style_titles_are_not_verified(title):
    assert candidates_for(_bundle(title=title, recognized=False)) == []


@pytest.mark.asyncio
async def test_first_source_in_priority_order_wins():
    met = RecordingSource("met_museum", ArtworkRecord(title="The Great Wave", artist="Hokusai", museum="The Met"))
    artic = RecordingSource("art_institute", ArtworkRecord(title="The Great Wave", artist="Hokusai"))

    record = await _agent(met, artic).run(_bundle())

    assert record.museum == "The Met"
    assert artic.calls == []


@pytest.mark.asyncio
async def test_failing_source_is_skipped():
    met = RecordingSource("met_museum", error=RuntimeError("HTTP 503"))
    wiki = RecordingSource("wikipedia", ArtworkRecord(title="The Great Wave", artist="Hokusai"))

    record = await _agent(met, wiki).run(_bundle())

    assert record.title == "The Great Wave"
    assert len(met.calls) == 1


@pytest.mark.asyncio
async def test_unknown_artist_is_taken_from_candidate():
    wiki = RecordingSource("wikipedia", ArtworkRecord(title="The Great Wave", artist="未知艺术家"))

    record = await _agent(wiki).run(_bundle())

    assert record.artist == "Katsushika Hokusai"


@pytest.mark.asyncio
async def test_falls_back_to_title_only_candidate():
    class TitleOnly(RecordingSource):
        def __call__(self, candidate):
            self.calls.append(candidate)
            return self.result if candidate.artist is None else None

    source = TitleOnly("met_museum", ArtworkRecord(title="The Great Wave", artist="Hokusai"))

    record = await _agent(source).run(_bundle())

    assert record is not None
    assert [c.artist for c in source.calls] == ["Katsushika Hokusai", None]


@pytest.mark.asyncio
async def test_results_are_remembered_by_hash():
    met = RecordingSource("met_museum", ArtworkRecord(title="The Great Wave", artist="Hokusai"))
    agent = _agent(met)

    first = await agent.run(_bundle(), combined_hash="abc123")
    second = await agent.run(_bundle(), combined_hash="abc123")

    assert first == second
    assert len(met.calls) == 1
    assert agent.recall("abc123") == first


@pytest.mark.asyncio
async def test_nothing_found():
    source = RecordingSource("met_museum")
    agent = _agent(source)

    assert await agent.run(_bundle(), combined_hash="zzz") is None
    assert len(source.calls) == 2
    assert agent.recall("zzz") is None
