"""
Tests for large-home classification.
"""

import pytest

from multiclean import config
from multiclean.domain.multi_cleaner import classification


@pytest.fixture(autouse=True)
def thresholds(monkeypatch):
    monkeypatch.setattr(config, "LARGE_HOME_BEDS_THRESHOLD", 3.0)
    monkeypatch.setattr(config, "LARGE_HOME_BATHS_THRESHOLD", 3.0)


class TestClassification:
    @pytest.mark.parametrize(
        "beds,baths,large,edge",
        [
            (2, 2, False, False),
            (3, 2, True, True),
            (3, 3, True, True),
            (4, 2, True, False),
            (3, 3.5, True, False),
            (2, 3, True, True),
        ],
    )
    def test_large_and_edge(self, beds, baths, large, edge):
        assert classification.is_large_home(beds, baths) is large
        assert classification.is_edge_large_home(beds, baths) is edge

    def test_solo_allowed_for_small_and_edge_homes(self):
        assert classification.is_solo_allowed(2, 1) is True
        assert classification.is_solo_allowed(3, 2) is True
        assert classification.is_solo_allowed(5, 2) is False

    def test_multi_cleaner_required_only_past_the_edge(self):
        assert classification.is_multi_cleaner_required(3, 3) is False
        assert classification.is_multi_cleaner_required(5, 2) is True

    def test_counts_stored_as_text(self):
        assert classification.is_large_home("4", "2.5") is True
        assert classification.is_large_home(None, "") is False

    def test_thresholds_are_read_at_call_time(self, monkeypatch):
        monkeypatch.setattr(config, "LARGE_HOME_BEDS_THRESHOLD", 5.0)
        monkeypatch.setattr(config, "LARGE_HOME_BATHS_THRESHOLD", 5.0)
        assert classification.is_large_home(4, 2) is False

    def test_classify_home_summary(self):
        class Home:
            num_beds = 4
            num_baths = 2

        assert classification.classify_home(Home()) == {
            "isLargeHome": True,
            "isEdgeLargeHome": False,
            "soloAllowed": False,
            "multiCleanerRequired": True,
        }
