import asyncio

from conftest import FakeLLM

from rvval.schemas import PropertyCandidate
from rvval.services.candidate_selector import CandidateSelector, SelectionMethod

TARGET = "123 Main St, Springfield, IL 62701"

CANDIDATES = [
    PropertyCandidate(index=0, one_line="99 Elm St, Springfield, IL 62701"),
    PropertyCandidate(index=1, one_line=TARGET),
    PropertyCandidate(index=2, one_line="5 Pine Rd, Decatur, IL 62521"),
]


def select(selector, candidates=CANDIDATES, target=TARGET):
    return asyncio.run(selector.select(candidates, target))


def test_no_candidates_and_single_candidate_skip_the_model():
    llm = FakeLLM('{"index": 0}')
    selector = CandidateSelector(llm=llm, timeout_seconds=1)

    empty = select(selector, [])
    assert empty.index is None
    assert empty.method == SelectionMethod.NONE

    single = select(selector, CANDIDATES[:1])
    assert single.index == 0
    assert single.method == SelectionMethod.SINGLE
    assert llm.prompts == []


def test_model_answer_is_used_when_valid():
    llm = FakeLLM('Sure! ```json\n{"index": 2}\n```')
    result = select(CandidateSelector(llm=llm, timeout_seconds=1))

    assert result.index == 2
    assert result.method == SelectionMethod.AI
    assert TARGET in llm.prompts[0]


def test_invalid_answers_fall_back_to_matcher():
    for response in ('{"index": 7}', '{"index": -1}', '{"index": true}', '{"index": 1.0}', 'no idea', '{"pick": 1}'):
        result = select(CandidateSelector(llm=FakeLLM(response), timeout_seconds=1))
        assert result.index == 1, response
        assert result.method == SelectionMethod.DETERMINISTIC
        assert result.error is not None


def test_model_exception_never_escapes():
    result = select(CandidateSelector(llm=FakeLLM(RuntimeError("quota exceeded")), timeout_seconds=1))

    assert result.index == 1
    assert result.method == SelectionMethod.DETERMINISTIC
    assert "quota exceeded" in result.error.reason


def test_without_model_uses_matcher_directly():
    result = select(CandidateSelector(llm=None, timeout_seconds=1))
    assert result.index == 1
    assert result.method == SelectionMethod.DETERMINISTIC
    assert result.error is None
