from rvval.schemas import PropertyCandidate
from rvval.utils.address_matcher import AddressMatcher

TARGET = "123 Main St, Springfield, IL 62701"


def candidate(index, one_line=None, **fields):
    return PropertyCandidate(index=index, one_line=one_line, **fields)


def test_split_address_for_attom():
    matcher = AddressMatcher()
    assert matcher.split_address(TARGET) == {'address1': "123 Main St", 'address2': "Springfield IL 62701"}
    assert matcher.split_address("123 Main St Springfield IL 62701") == {
        'address1': "123 Main St",
        'address2': "Springfield IL 62701",
    }


def test_split_address_parts():
    parts = AddressMatcher().split_address_parts(TARGET + ", USA")
    assert (parts.line1, parts.city, parts.state, parts.zip_code) == ("123 Main St", "Springfield", "IL", "62701")


def test_exact_match_beats_substring_regardless_of_order():
    matcher = AddressMatcher()
    exact = candidate(0, one_line=TARGET)
    partial = candidate(1, one_line="123 Main St")

    assert matcher.best_candidate_index([exact, partial], TARGET) == 0
    assert matcher.best_candidate_index([partial, exact], TARGET) == 1


def test_score_components():
    matcher = AddressMatcher()
    scored = candidate(0, address_line1="9 Oak Ave", city="Springfield", state="IL", zip_code="62701-1234")
    # zip (10) + zip digits as a number token (5) + state (5) + city (5)
    assert matcher.score_candidate(scored, TARGET) == 25


def test_ties_go_to_first_seen_and_empty_target_defaults_to_zero():
    matcher = AddressMatcher()
    same = [candidate(0, one_line="1 A St"), candidate(1, one_line="1 A St")]
    assert matcher.best_candidate_index(same, "1 A St") == 0
    assert matcher.best_candidate_index(same, "") == 0
