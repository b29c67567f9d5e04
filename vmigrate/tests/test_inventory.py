"""Tests for batch file loading (CSV and YAML)."""

import pytest
import yaml

from vmigrate.errors import ValidationError
from vmigrate.pipeline.inventory import load_batch


class TestCsvBatch:
    def test_order_preserved(self, tmp_path):
        path = tmp_path / "batch.csv"
        path.write_text("VMName\nweb02\nweb01\ndb01\n")
        units = load_batch(path)
        assert [u.name for u in units] == ["web02", "web01", "db01"]
        assert all(u.status.value == "Pending" for u in units)

    def test_header_case_and_name_alias(self, tmp_path):
        path = tmp_path / "batch.csv"
        path.write_text("name,owner\nweb01,ops\n")
        assert [u.name for u in load_batch(path)] == ["web01"]

    def test_blank_and_comment_lines_skipped(self, tmp_path):
        path = tmp_path / "batch.csv"
        path.write_text("# wave 1\nVMName\n\nweb01\n  # later\ndb01\n")
        assert [u.name for u in load_batch(path)] == ["web01", "db01"]

    def test_utf8_bom_header(self, tmp_path):
        path = tmp_path / "batch.csv"
        path.write_bytes("\ufeffVMName\nweb01\n".encode("utf-8"))
        assert [u.name for u in load_batch(path)] == ["web01"]

    def test_missing_column(self, tmp_path):
        path = tmp_path / "batch.csv"
        path.write_text("Host,Owner\nesx1,ops\n")
        with pytest.raises(ValidationError, match="no VM name column"):
            load_batch(path)

    def test_empty_name(self, tmp_path):
        path = tmp_path / "batch.csv"
        path.write_text("VMName,Owner\nweb01,ops\n,ops\n")
        with pytest.raises(ValidationError, match="row 3"):
            load_batch(path)

    def test_duplicate_is_case_insensitive(self, tmp_path):
        path = tmp_path / "batch.csv"
        path.write_text("VMName\nweb01\nWEB01\n")
        with pytest.raises(ValidationError, match="Duplicate"):
            load_batch(path)

    def test_header_only(self, tmp_path):
        path = tmp_path / "batch.csv"
        path.write_text("VMName\n")
        with pytest.raises(ValidationError, match="no VMs"):
            load_batch(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValidationError, match="Cannot read"):
            load_batch(tmp_path / "nope.csv")


class TestYamlBatch:
    def test_plain_list(self, tmp_path):
        path = tmp_path / "batch.yaml"
        path.write_text(yaml.safe_dump(["web01", "db01"]))
        assert [u.name for u in load_batch(path)] == ["web01", "db01"]

    def test_vms_mapping_with_dicts(self, tmp_path):
        path = tmp_path / "batch.yml"
        path.write_text(yaml.safe_dump({"vms": [{"name": "web01"}, "db01"]}))
        assert [u.name for u in load_batch(path)] == ["web01", "db01"]

    def test_mapping_without_vms(self, tmp_path):
        path = tmp_path / "batch.yaml"
        path.write_text(yaml.safe_dump({"machines": ["web01"]}))
        with pytest.raises(ValidationError, match="list of VMs"):
            load_batch(path)

    def test_entry_without_name(self, tmp_path):
        path = tmp_path / "batch.yaml"
        path.write_text(yaml.safe_dump({"vms": [{"host": "esx1"}]}))
        with pytest.raises(ValidationError, match="entry 1"):
            load_batch(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "batch.yaml"
        path.write_text("vms: [web01\n")
        with pytest.raises(ValidationError, match="not valid YAML"):
            load_batch(path)
