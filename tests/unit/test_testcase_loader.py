"""Tests for test case loading."""

import json
from pathlib import Path

import pytest

from image_boot_tests.testcase_loader import list_test_cases, load_test_case
from image_boot_tests.testing.testcase.payloads import image_info, testcase_document


class TestLoadTestCase:
    """Tests for load_test_case function."""

    async def test_loads_generated_test_case(self, tmp_path: Path) -> None:
        """Loads the lower-case keys written by the test case generator."""
        path = tmp_path / "fedora_32-x86_64-qcow2-boot.json"
        path.write_text(
            json.dumps(testcase_document(image_info=image_info(), boot_type="qemu"))
        )

        test_case = await load_test_case(path)

        assert test_case.compose_request.distro == "fedora-32"
        assert test_case.compose_request.arch == "x86_64"
        assert test_case.compose_request.filename == "disk.qcow2"
        assert test_case.image_info == image_info()
        assert test_case.boot is not None
        assert test_case.boot.type == "qemu"

    async def test_accepts_capitalized_keys(self, tmp_path: Path) -> None:
        path = tmp_path / "case.json"
        path.write_text(
            json.dumps(
                {
                    "compose-request": {
                        "Distro": "rhel-8",
                        "Arch": "aarch64",
                        "Filename": "image.raw",
                    },
                    "Manifest": {"pipeline": {}},
                    "Boot": {"Type": "nspawn"},
                }
            )
        )

        test_case = await load_test_case(path)

        assert test_case.compose_request.arch == "aarch64"
        assert test_case.manifest == {"pipeline": {}}
        assert test_case.boot is not None
        assert test_case.boot.type == "nspawn"

    async def test_optional_checks_default_to_none(self, tmp_path: Path) -> None:
        path = tmp_path / "case.json"
        path.write_text(json.dumps(testcase_document()))

        test_case = await load_test_case(path)

        assert test_case.image_info is None
        assert test_case.boot is None

    async def test_unknown_boot_type_is_loaded(self, tmp_path: Path) -> None:
        """Unknown boot types are rejected when dispatching, not when loading."""
        path = tmp_path / "case.json"
        path.write_text(json.dumps(testcase_document(boot_type="vmware")))

        test_case = await load_test_case(path)

        assert test_case.boot is not None
        assert test_case.boot.type == "vmware"

    async def test_raises_for_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "case.json"
        path.write_text("{not json")

        with pytest.raises(ValueError, match="Invalid JSON"):
            await load_test_case(path)

    async def test_raises_for_invalid_schema(self, tmp_path: Path) -> None:
        path = tmp_path / "case.json"
        path.write_text(json.dumps({"manifest": {}}))

        with pytest.raises(ValueError, match="Invalid test case schema"):
            await load_test_case(path)

    async def test_missing_file_raises_os_error(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            await load_test_case(tmp_path / "missing.json")


def test_list_test_cases_skips_directories(tmp_path: Path) -> None:
    (tmp_path / "b.json").write_text("{}")
    (tmp_path / "a.json").write_text("{}")
    (tmp_path / "subdir").mkdir()

    assert list_test_cases(tmp_path) == [tmp_path / "a.json", tmp_path / "b.json"]
