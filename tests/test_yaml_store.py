from pathlib import Path

import pytest
import yaml

from compmem.errors import ConfigurationError, StoreError
from compmem.store import ChangeKind, YamlDefinitionStore

from conftest import make_group, make_memory


def _full_memory():
    return make_memory(
        [
            make_group(id="g1", name="Temps", input_item_ids=["t1", "t2", "t3"], required_votes=2,
                       voting_hysteresis=1, comparison_mode="analog", compare_type="between",
                       threshold1=18.5, threshold2=24.0, threshold_hysteresis=0.5),
            make_group(id="g2", input_item_ids=["door"], digital_value="0"),
        ],
        id="room-ok",
        group_operator="xor",
        duration=12.5,
        interval=2,
        invert_output=True,
    )


def test_round_trip_preserves_every_field(tmp_path: Path):
    store = YamlDefinitionStore(tmp_path)
    memory = _full_memory()
    store.save(memory)
    loaded = store.get("room-ok")
    assert loaded == memory
    assert store.load_all() == [memory]


def test_saved_file_is_plain_yaml(tmp_path: Path):
    store = YamlDefinitionStore(tmp_path)
    store.save(_full_memory())
    with open(tmp_path / "room-ok.yaml") as f:
        data = yaml.safe_load(f)
    assert data["group_operator"] == "xor"
    assert data["comparison_groups"][0]["compare_type"] == "between"
    assert not list(tmp_path.glob("*.tmp"))


def test_save_rejects_invalid_definition(tmp_path: Path):
    store = YamlDefinitionStore(tmp_path)
    with pytest.raises(ConfigurationError):
        store.save(make_memory(interval=0))
    assert list(tmp_path.iterdir()) == []


def test_load_all_skips_broken_and_invalid_files(tmp_path: Path):
    store = YamlDefinitionStore(tmp_path)
    store.save(make_memory(id="good"))
    (tmp_path / "broken.yaml").write_text("comparison_groups: [unclosed\n")
    (tmp_path / "unknown.yaml").write_text("id: x\nsurprise: true\n")
    invalid = make_memory(id="invalid").model_dump(mode="json")
    invalid["interval"] = 0
    (tmp_path / "invalid.yaml").write_text(yaml.safe_dump(invalid))
    assert [m.id for m in store.load_all()] == ["good"]


def test_legacy_codes_load(tmp_path: Path):
    (tmp_path / "legacy.yaml").write_text(
        "id: legacy\n"
        "group_operator: 2\n"
        "output_item_id: out\n"
        "comparison_groups:\n"
        "  - id: g\n"
        "    input_item_ids: [a]\n"
        "    comparison_mode: 1\n"
        "    compare_type: 3\n"
        "    threshold1: 10\n"
    )
    [memory] = YamlDefinitionStore(tmp_path).load_all()
    assert memory.group_operator.value == "or"
    assert memory.comparison_groups[0].compare_type.value == "higher"


def test_change_handlers_are_notified(tmp_path: Path):
    store = YamlDefinitionStore(tmp_path)
    events = []
    store.register_change_handler(lambda kind, memory_id, memory: events.append((kind, memory_id, memory is None)))

    def broken_handler(kind, memory_id, memory):
        raise RuntimeError("handler bug")
    store.register_change_handler(broken_handler)

    store.save(make_memory(id="m"))
    assert store.delete("m") is True
    assert store.delete("m") is False
    assert events == [(ChangeKind.SAVED, "m", False), (ChangeKind.DELETED, "m", True)]


def test_unsafe_ids_are_refused(tmp_path: Path):
    store = YamlDefinitionStore(tmp_path)
    with pytest.raises(StoreError):
        store.save(make_memory(id="../escape"))
    assert store.get("missing") is None


def test_list_ids_includes_files_that_do_not_load(tmp_path: Path):
    store = YamlDefinitionStore(tmp_path)
    store.save(make_memory(id="good"))
    (tmp_path / "broken.yaml").write_text("comparison_groups: [unclosed\n")
    (tmp_path / "notes.txt").write_text("not a definition")
    assert store.list_ids() == ["broken", "good"]
    assert [m.id for m in store.load_all()] == ["good"]
