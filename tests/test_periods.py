from datetime import date

import pytest

from commission_desk.core.periods import lock_key, month_start, normalize_month, previous_month


def test_normalize_month():
    assert normalize_month(" 2025-05 ") == "2025-05"


@pytest.mark.parametrize("value", ["2025-5", "2025-13", "May 2025", "", "2025-00"])
def test_invalid_months(value):
    with pytest.raises(ValueError):
        normalize_month(value)


def test_month_start_and_previous_month():
    assert month_start("2025-05") == date(2025, 5, 1)
    assert previous_month("2025-01") == "2024-12"
    assert previous_month("2025-05") == "2025-04"


def test_lock_key():
    assert lock_key(7, "2025-05") == "7:2025-05"
