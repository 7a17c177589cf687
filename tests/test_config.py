import pytest

from peakanalyzer.core.config import (
    ContextSettings,
    DetectionConfig,
    PeakAnalysisConfig,
    get_config_schema,
    list_config_schemas,
    validate_config,
)
from peakanalyzer.core.errors import ConfigValidationError, UnknownMethodError


def test_defaults():
    config = validate_config('peak_analysis', None)
    assert isinstance(config, PeakAnalysisConfig)
    assert config.detection.method == 'peak_finder'
    assert config.fitting.method == 'gaussian'
    assert config.overlap.overlap_tolerance == 0.1
    assert config.scoring.rsquared_weight == 0.4


def test_model_instances_pass_through():
    config = DetectionConfig(sensitivity=0.2)
    assert validate_config('detection', config) is config


def test_nested_dict_payload():
    config = validate_config('peak_analysis', {'detection': {'method': 'cwt'}, 'overlap': {'method': 'fbf'}})
    assert config.detection.method == 'cwt'
    assert config.overlap.method == 'fbf'


@pytest.mark.parametrize('schema, payload', [
    ('detection', {'sensitivity': 2.0}),
    ('detection', {'min_peak_width': 5.0, 'max_peak_width': 1.0}),
    ('fitting', {'max_iterations': 0}),
    ('scoring', {'rsquared_weight': 0.9}),
    ('extraction', {'mz_range': (500.0, 100.0)}),
    ('baseline', {'unknown_key': 1}),
])
def test_invalid_payloads(schema, payload):
    with pytest.raises(ConfigValidationError) as excinfo:
        validate_config(schema, payload)
    assert excinfo.value.schema == schema
    assert excinfo.value.errors


def test_error_details_are_structured():
    with pytest.raises(ConfigValidationError) as excinfo:
        validate_config('fitting', {'max_iterations': -1})
    error = excinfo.value.to_dict()
    assert error['error'] == 'ConfigValidationError'
    assert error['details']['errors'][0]['loc'] == ['max_iterations']


def test_unknown_schema():
    with pytest.raises(UnknownMethodError):
        validate_config('plotting', {})


def test_schemas_are_json_schema():
    assert 'strategy' in list_config_schemas()
    schema = get_config_schema('baseline')
    assert schema['properties']['lam']['default'] == 1e5


def test_scoring_weight_fields():
    properties = get_config_schema('scoring')['properties']
    defaults = {name: properties[name]['default'] for name in (
        'rsquared_weight', 'symmetry_weight', 'confidence_weight', 'resolution_weight')}
    assert defaults == {'rsquared_weight': 0.4, 'symmetry_weight': 0.2,
                        'confidence_weight': 0.2, 'resolution_weight': 0.2}
    assert properties['non_convergence_penalty']['default'] == 0.5


def test_context_settings_from_env():
    settings = ContextSettings.from_env({'PEAKANALYZER_MAX_WORKERS': '2', 'PEAKANALYZER_LOG_LEVEL': 'debug'})
    assert settings.max_workers == 2
    assert settings.log_level == 'debug'
    assert settings.cache_max_size == 16
