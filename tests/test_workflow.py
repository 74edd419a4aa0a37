import json

import pytest

from audit_sim.facility import FacilityAttributes
from audit_sim.workflow import (
    ArgumentSpec,
    CategoryTable,
    Predicate,
    WorkflowDescriptor,
    WorkflowTemplateStore,
    measures_exist,
    read_module_kind,
)

MEASURE_XML = """<?xml version="1.0"?>
<measure>
  <name>{name}</name>
  <attributes>
    <attribute>
      <name>Measure Type</name>
      <value>{kind}</value>
      <datatype>string</datatype>
    </attribute>
  </attributes>
</measure>
"""


def _write_module(root, name, kind):
    module_dir = root / name
    module_dir.mkdir(parents=True)
    (module_dir / "measure.xml").write_text(MEASURE_XML.format(name=name, kind=kind), encoding="utf-8")
    return module_dir


class TestDescriptor:
    def test_round_trip_dict(self):
        data = {"measure_paths": ["m"], "steps": [{"module_name": "a", "arguments": {"x": 1}}]}
        assert WorkflowDescriptor.from_dict(data).to_dict() == data

    def test_missing_keys(self):
        with pytest.raises(ValueError, match="steps"):
            WorkflowDescriptor.from_dict({"measure_paths": []})

    def test_step_missing_module_name(self):
        with pytest.raises(ValueError):
            WorkflowDescriptor.from_dict({"measure_paths": [], "steps": [{"arguments": {}}]})

    def test_clone_shares_nothing(self):
        original = WorkflowDescriptor.from_dict(
            {"measure_paths": ["m"], "steps": [{"module_name": "a", "arguments": {"nested": {"k": 1}}}]}
        )
        clone = original.clone()
        clone.steps[0].arguments["nested"]["k"] = 2
        clone.steps[0].arguments["new"] = True
        clone.measure_paths.append("other")
        clone.steps.append(clone.steps[0])
        assert original.to_dict() == {
            "measure_paths": ["m"], "steps": [{"module_name": "a", "arguments": {"nested": {"k": 1}}}]
        }

    def test_measure_path_helpers(self):
        descriptor = WorkflowDescriptor()
        descriptor.add_measure_path("a")
        descriptor.add_measure_path("a")
        assert descriptor.measure_paths == ["a"]
        descriptor.set_measure_paths(["b", "c"])
        assert descriptor.measure_paths == ["b", "c"]

    def test_json_is_engine_format(self):
        descriptor = WorkflowDescriptor(["m"])
        assert json.loads(descriptor.to_json()) == {"measure_paths": ["m"], "steps": []}


class TestArguments:
    def test_predicate(self):
        predicate = Predicate("bldg_type", "SmallOffice")
        assert predicate.matches(FacilityAttributes(bldg_type="SmallOffice"))
        assert not predicate.matches(FacilityAttributes(bldg_type="Warehouse"))
        assert not predicate.matches(FacilityAttributes())

    def test_unknown_predicate_attribute(self):
        with pytest.raises(ValueError):
            Predicate.from_dict({"attribute": "color", "equals": "red"})

    def test_interpolation(self):
        argument = ArgumentSpec.from_dict({"name": "t", "value": "Office {template}", "interpolate": True})
        assert argument.resolve(FacilityAttributes(template="90.1-2010")) == "Office 90.1-2010"

    def test_no_interpolation_by_default(self):
        argument = ArgumentSpec.from_dict({"name": "t", "value": "{template}"})
        assert argument.resolve(FacilityAttributes(template="90.1-2010")) == "{template}"

    def test_argument_missing_value(self):
        with pytest.raises(ValueError):
            ArgumentSpec.from_dict({"name": "t"})


class TestCategoryTable:
    def test_single_and_list_bindings(self):
        table = CategoryTable.from_dict({
            "Lighting": {
                "LED": {"module_name": "a", "arguments": [{"name": "x", "value": 1}]},
                "Both": [{"module_name": "a"}, {"module_name": "b"}],
            }
        })
        assert table.categories == ["Lighting"]
        assert table.has_category("Lighting")
        assert [b.module_name for b in table.lookup("Lighting", "Both")] == ["a", "b"]
        assert table.lookup("Lighting", "LED")[0].arguments[0].value == 1
        assert table.lookup("Lighting", "Missing") == []
        assert table.lookup("Roof", "LED") == []

    def test_packaged_table_loads(self, store):
        assert "Lighting" in store.table.categories
        bindings = store.table.lookup("Lighting", "Add daylight controls")
        assert bindings[0].module_name == "AddDaylightSensors"
        assert any(arg.condition is not None for arg in bindings[0].arguments)


class TestStore:
    def test_template_is_a_copy(self, store):
        first = store.new_descriptor()
        first.steps.clear()
        assert store.new_descriptor().steps

    def test_module_kinds_from_template(self, store):
        assert store.module_kind("set_run_period") == "ModelMeasure"
        assert store.module_kind("SetEnergyPlusMinimalShadowing") == "EnergyPlusMeasure"
        assert store.module_kind("openstudio_results") == "ReportingMeasure"
        assert store.module_kind("not_a_module") is None

    def test_module_kind_from_measure_xml(self, tmp_path):
        _write_module(tmp_path, "custom_report", "ReportingMeasure")
        store = WorkflowTemplateStore(WorkflowDescriptor([str(tmp_path)]), CategoryTable({}))
        assert store.module_kind("custom_report") == "ReportingMeasure"
        assert store.available_modules() == ["custom_report"]

    def test_read_module_kind_ignores_unknown_type(self, tmp_path):
        assert read_module_kind(_write_module(tmp_path, "odd", "UtilityMeasure")) is None
        assert read_module_kind(tmp_path / "absent") is None

    def test_bad_module_kind(self):
        with pytest.raises(ValueError):
            WorkflowTemplateStore(WorkflowDescriptor(), CategoryTable({}), {"a": "Nonsense"})

    def test_load_from_files(self, tmp_path):
        workflow = tmp_path / "wf.json"
        table = tmp_path / "table.json"
        workflow.write_text(json.dumps({
            "measure_paths": ["m"],
            "steps": [{"module_name": "a", "arguments": {}}],
            "module_kinds": {"a": "ModelMeasure"},
        }), encoding="utf-8")
        table.write_text(json.dumps({"Lighting": {"LED": {"module_name": "a"}}}), encoding="utf-8")
        store = WorkflowTemplateStore.load(workflow, table)
        assert store.template.step_names() == ["a"]
        assert store.module_kind("a") == "ModelMeasure"


def test_measures_exist(tmp_path, caplog):
    _write_module(tmp_path, "present", "ModelMeasure")
    descriptor = WorkflowDescriptor.from_dict({
        "measure_paths": [str(tmp_path)],
        "steps": [{"module_name": "present"}],
    })
    assert measures_exist(descriptor)
    descriptor.steps.append(descriptor.steps[0].__class__("absent"))
    assert not measures_exist(descriptor)
    assert "absent" in caplog.text
