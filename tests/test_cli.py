import json

import cli


def test_dry_run_prints_resolved_dto(capsys):
    code = cli.main(["--loader", "phantom", "--iso", "0.3", "--formats", "stl", "npz", "--dry-run"])
    assert code == 0

    out = capsys.readouterr().out
    payload = json.loads(out[out.index("{"):])
    assert payload["loader_type"] == "phantom"
    assert payload["iso_value"] == 0.3
    assert payload["export_formats"] == ["stl", "npz"]


def test_config_file_overrides_flags(tmp_path, capsys):
    cfg = tmp_path / "run.json"
    cfg.write_text(json.dumps({"loader_type": "phantom", "slab_depth": 7}), encoding="utf-8")
    assert cli.main(["--config", str(cfg), "--slab", "3", "--dry-run"]) == 0

    out = capsys.readouterr().out
    assert json.loads(out[out.index("{"):])["slab_depth"] == 7


def test_phantom_batch_exports(tmp_path):
    code = cli.main([
        "--loader", "phantom", "--input", "12",
        "--output", str(tmp_path), "--formats", "npz",
    ])
    assert code == 0
    assert (tmp_path / "surface.npz").exists()


def test_failure_exit_code(tmp_path):
    assert cli.main(["--input", str(tmp_path / "missing")]) == 2


def test_batch_reports_pipeline_total(tmp_path, capsys):
    assert cli.main([
        "--loader", "phantom", "--input", "12",
        "--output", str(tmp_path), "--formats", "npz",
    ]) == 0
    assert "(total 100%)" in capsys.readouterr().out


def test_tissue_preset_flag(capsys):
    assert cli.main(["--loader", "phantom", "--auto-iso", "--tissue", "bone", "--dry-run"]) == 0

    out = capsys.readouterr().out
    payload = json.loads(out[out.index("{"):])
    assert payload["auto_iso"] is True
    assert payload["iso_tissue"] == "bone"
