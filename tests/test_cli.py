import pandas as pd
import pytest

from audit_sim import cli, dispatch
from audit_sim.facility import load_document

from conftest import document_xml, sample_results, scenario_xml, write_engine_outputs


@pytest.fixture
def fake_engine(monkeypatch):
    runs = []

    def run_engine(command, workflow_path, run_dir, timeout=None):
        assert workflow_path.exists()
        runs.append(run_dir.name)
        energy = 200000.0 if run_dir.name == "Baseline" else 150000.0
        write_engine_outputs(run_dir, results=sample_results(energy))

    monkeypatch.setattr(dispatch, "run_engine", run_engine)
    return runs


def test_end_to_end(audit_xml, fake_engine, tmp_path):
    source = tmp_path / "building.xml"
    source.write_text(audit_xml, encoding="utf-8")
    output_dir = tmp_path / "runs"
    summary = tmp_path / "summary.csv"

    code = cli.main([str(source), str(output_dir), "--year", "2021", "--summary-csv", str(summary), "--cleanup"])

    assert code == 0
    assert sorted(fake_engine) == ["Baseline", "LED_Retrofit", "Scenario-Plug"]
    result = load_document(output_dir / "results.xml")
    led = result.report.get_scenario("Scenario-LED")
    assert led.get_text_as_float("ScenarioType/PackageOfMeasures/AnnualSavingsSiteEnergy") == pytest.approx(50)
    assert len(result.report.cb_modeled.get_time_series_data()) == 24
    assert set(pd.read_csv(summary)["scenario_id"]) == {s.get_id() for s in result.facility.scenarios}


def test_baseline_only(audit_xml, fake_engine, tmp_path):
    source = tmp_path / "building.xml"
    source.write_text(audit_xml, encoding="utf-8")
    assert cli.main([str(source), str(tmp_path / "runs"), "--baseline-only"]) == 0
    assert fake_engine == ["Baseline"]


def test_failed_scenario_sets_exit_code(audit_xml, monkeypatch, tmp_path):
    def run_engine(command, workflow_path, run_dir, timeout=None):
        write_engine_outputs(run_dir, results=sample_results(), finished=run_dir.name != "LED_Retrofit")

    monkeypatch.setattr(dispatch, "run_engine", run_engine)
    source = tmp_path / "building.xml"
    source.write_text(audit_xml, encoding="utf-8")
    assert cli.main([str(source), str(tmp_path / "runs")]) == 1


def test_skip_simulation_reads_existing_runs(audit_xml, tmp_path):
    source = tmp_path / "building.xml"
    source.write_text(audit_xml, encoding="utf-8")
    output_dir = tmp_path / "runs"
    for name in ("Baseline", "LED_Retrofit", "Scenario-Plug"):
        write_engine_outputs(output_dir / name, results=sample_results())
    assert cli.main([str(source), str(output_dir), "--skip-simulation", "--year", "2021"]) == 0


def test_invalid_document_exits(tmp_path):
    source = tmp_path / "two.xml"
    source.write_text(document_xml([scenario_xml("Scenario-B", "modeled", "B")], facilities=2), encoding="utf-8")
    with pytest.raises(SystemExit) as excinfo:
        cli.main([str(source), str(tmp_path / "runs")])
    assert "Exactly 1 Facility is required" in str(excinfo.value)


def test_missing_document_exits(tmp_path):
    with pytest.raises(SystemExit):
        cli.main([str(tmp_path / "absent.xml"), str(tmp_path / "runs")])
