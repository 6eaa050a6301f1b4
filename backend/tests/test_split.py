import pytest

from veaportal.services.split import kobo_to_naira, split_revenue


def test_ten_percent_of_one_thousand_naira():
    split = split_revenue(100000, 10)
    assert split.developer_share_kobo == 10000
    assert split.school_net_kobo == 90000
    assert split.school_net_amount == 900.00


def test_tie_rounds_half_up():
    # 25 kobo at 10% is 2.5 kobo
    assert split_revenue(25, 10).developer_share_kobo == 3
    assert split_revenue(35, 10).developer_share_kobo == 4
    assert split_revenue(15, 10).developer_share_kobo == 2


def test_shares_add_up_to_gross():
    for gross in (0, 1, 99, 100, 12345, 100000, 987654321):
        for percent in (0, 1, 1.5, 10, 33, 50, 99.9, 100):
            split = split_revenue(gross, percent)
            assert split.developer_share_kobo + split.school_net_kobo == gross
            assert split.school_net_kobo >= 0


def test_net_clamped_at_zero_above_one_hundred_percent():
    split = split_revenue(100000, 150)
    assert split.developer_share_kobo == 150000
    assert split.school_net_kobo == 0


def test_zero_percent_keeps_everything_for_school():
    split = split_revenue(5050, 0)
    assert split.developer_share_kobo == 0
    assert split.school_net_kobo == 5050


def test_negative_inputs_rejected():
    with pytest.raises(ValueError):
        split_revenue(-1, 10)
    with pytest.raises(ValueError):
        split_revenue(100, -5)


def test_kobo_to_naira():
    assert kobo_to_naira(100000) == 1000.0
    assert kobo_to_naira(12345) == 123.45
    assert kobo_to_naira(5, places=2) == 0.05
