from rvval.schemas import (
    HousingCrisisMetrics,
    HousingStatus,
    LookupContext,
    PropertyCandidate,
    housing_status,
)


def test_housing_status_threshold():
    assert housing_status(29.9) == HousingStatus.CRITICAL_SHORTAGE
    assert housing_status(30) == HousingStatus.STABLE
    assert housing_status(None) == HousingStatus.UNAVAILABLE

    dumped = HousingCrisisMetrics(affordable_units_per_100=12).model_dump(mode="json")
    assert dumped['status'] == "Critical Shortage"


def test_context_cleans_blank_inputs():
    context = LookupContext(address="  ", apn=" 12-3 ", lat="39.78", lng="")

    assert context.address is None
    assert context.apn == "12-3"
    assert context.lat == 39.78
    assert context.lng is None
    assert not context.has_coordinates
    assert not context.has_parcel


def test_candidate_address_text():
    assert PropertyCandidate(index=0, one_line="1 A St").address_text == "1 A St"
    candidate = PropertyCandidate(index=1, address_line1="1 A St", city="Town", state="IL")
    assert candidate.address_text == "1 A St, Town, IL"
    assert 'zip_code' not in candidate.to_prompt_dict()
