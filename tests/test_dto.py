import json

import pytest

from core.dto import ReconstructionParamsDTO
from config import EXTRACT_MAX_WORKERS, EXTRACT_SLAB_DEPTH, EXTRACT_STEP_SIZE, LOADER_MAX_WORKERS


def test_dto_uses_config_defaults():
    dto = ReconstructionParamsDTO()
    assert dto.extract_workers == EXTRACT_MAX_WORKERS
    assert dto.slab_depth == EXTRACT_SLAB_DEPTH
    assert dto.step_size == EXTRACT_STEP_SIZE
    assert dto.loader_workers == LOADER_MAX_WORKERS
    assert dto.export_formats == ("vtp",)


def test_dto_from_empty_dict_matches_defaults():
    assert ReconstructionParamsDTO.from_dict({}) == ReconstructionParamsDTO()


def test_dto_is_frozen():
    dto = ReconstructionParamsDTO()
    with pytest.raises(Exception):
        dto.iso_value = 0.3  # type: ignore[misc]


def test_dto_dict_round_trip():
    dto = ReconstructionParamsDTO(
        input_path="/data/ct",
        series_uid="1.2.3",
        iso_value=0.42,
        auto_iso=True,
        iso_algorithm="li",
        iso_tissue="bone",
        export_formats=("stl", "npz"),
    )
    assert ReconstructionParamsDTO.from_dict(dto.to_dict()) == dto


def test_dto_from_json_and_yaml(tmp_path):
    json_path = tmp_path / "run.json"
    json_path.write_text(json.dumps({"loader_type": "phantom", "phantom_size": 32}), encoding="utf-8")
    dto = ReconstructionParamsDTO.from_json(str(json_path))
    assert dto.loader_type == "phantom"
    assert dto.phantom_size == 32

    yaml_path = tmp_path / "run.yaml"
    yaml_path.write_text("iso_value: 0.25\nexport_formats: [ply, vti]\nsmooth_iterations: 4\n", encoding="utf-8")
    dto = ReconstructionParamsDTO.from_yaml(str(yaml_path))
    assert dto.iso_value == pytest.approx(0.25)
    assert dto.export_formats == ("ply", "vti")
    assert dto.smooth_iterations == 4
