from __future__ import annotations

import pytest

from fleetward.errors import FleetwardError, UnrecognizedFormatError
from fleetward.family import extract_family, is_same_family, same_family, try_extract_family

pytestmark = [pytest.mark.unit]


class TestExtractFamily:
    @pytest.mark.parametrize(
        ("instance_type", "family"),
        [
            ("m5.xlarge", "m5"),
            ("p4d.24xlarge", "p4d"),
            ("c7g.metal", "c7g"),
            ("n2-standard-4", "n2-standard"),
            ("n2d-highmem-8", "n2d-highmem"),
            ("a2-highgpu-1g", "a2-highgpu"),
            ("e2-medium", "e2"),
            ("f1-micro", "f1"),
            ("Standard_D4s_v3", "Standard_D_v3"),
            ("Standard_NC6s_v3", "Standard_NC_v3"),
            ("Standard_E8pds_v5", "Standard_E_v5"),
            ("Standard_NC24ads_A100_v4", "Standard_NC_v4"),
            ("Standard_B2ms", "Standard_B"),
            ("metal", "metal"),
        ],
    )
    def test_known_shapes(self, instance_type: str, family: str):
        assert extract_family(instance_type) == family

    def test_sizes_of_one_family_agree(self):
        assert extract_family("m5.large") == extract_family("m5.24xlarge")
        assert extract_family("Standard_D2s_v5") == extract_family("Standard_D96s_v5")

    @pytest.mark.parametrize("bad", ["", ".large", "-4", "Standard_", "Standard_4x"])
    def test_unrecognized(self, bad: str):
        with pytest.raises(UnrecognizedFormatError):
            extract_family(bad)

    def test_error_is_a_value_error(self):
        with pytest.raises(ValueError):
            extract_family("")

    def test_error_message_names_input(self):
        with pytest.raises(FleetwardError, match="Standard_4x"):
            extract_family("Standard_4x")


class TestTryExtractFamily:
    def test_returns_family(self):
        assert try_extract_family("r6i.2xlarge") == "r6i"

    def test_empty_on_failure(self):
        assert try_extract_family("") == ""
        assert try_extract_family(".large") == ""


class TestSameFamily:
    def test_case_insensitive(self):
        assert same_family("M5", "m5")
        assert same_family("standard_d_v3", "Standard_D_v3")

    def test_different(self):
        assert not same_family("m5", "m5a")


class TestIsSameFamily:
    def test_same_family_different_size(self):
        assert is_same_family("m5.large", "m5.2xlarge")
        assert is_same_family("n2-standard-4", "n2-standard-32")
        assert is_same_family("Standard_D4s_v3", "Standard_D16s_v3")

    def test_different_families(self):
        assert not is_same_family("m5.large", "m6i.large")
        assert not is_same_family("n2-standard-4", "n2-highmem-4")
        assert not is_same_family("Standard_D4s_v3", "Standard_D4s_v5")

    def test_unparseable_raises(self):
        with pytest.raises(UnrecognizedFormatError):
            is_same_family("m5.large", "")
