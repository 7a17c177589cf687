import pytest

from peakanalyzer.core.errors import ConfigValidationError, ControllerNotInitializedError, UnknownMethodError
from peakanalyzer.peak_analysis import PeakDetector
from peakanalyzer.strategy import (
    ComponentDescriptor,
    ComponentRegistry,
    ComponentType,
    CurveCharacteristics,
    ProcessingMode,
    ProcessingStrategy,
    StrategyController,
    build_default_registry,
)


@pytest.fixture
def controller():
    return StrategyController().initialize()


# ===== 注册表 =====

def test_default_registry_lists_builtin_components():
    registry = build_default_registry()

    detectors = {d.name for d in registry.list_components(ComponentType.PEAK_DETECTOR)}
    assert detectors == {'simple', 'peak_finder', 'cwt'}
    overlap = {d.name for d in registry.list_components(ComponentType.OVERLAP_PROCESSOR)}
    assert {'none', 'fbf', 'sharpen_cwt', 'emg_nlls', 'extreme_overlap', 'auto'} <= overlap
    assert registry.has(ComponentType.FITTING_METHOD, 'gaussian')
    assert registry.has(ComponentType.FITTING_METHOD, 'pearson_iv')
    assert registry.has(ComponentType.FITTING_METHOD, 'voigt_exponential_tail')
    assert registry.has(ComponentType.PARAMETER_OPTIMIZER, 'grid_search')
    assert registry.has(ComponentType.ADVANCED_ALGORITHM, 'emg_algorithm')
    assert registry.has(ComponentType.POST_PROCESSOR, 'quality_validation')


def test_registry_creates_components():
    registry = build_default_registry()
    detector = registry.create(ComponentType.PEAK_DETECTOR, 'cwt')
    assert isinstance(detector, PeakDetector)
    assert detector.method == 'cwt'


def test_registry_unknown_component():
    registry = build_default_registry()
    with pytest.raises(UnknownMethodError) as excinfo:
        registry.create(ComponentType.FITTING_METHOD, 'unknown_method')
    assert excinfo.value.method == 'unknown_method'
    assert excinfo.value.component == 'FittingMethod'


def test_registry_rejects_duplicates_unless_replaced():
    registry = ComponentRegistry()
    descriptor = ComponentDescriptor(ComponentType.POST_PROCESSOR, 'noop')
    registry.register(descriptor, lambda **kwargs: None)

    with pytest.raises(ValueError):
        registry.register(descriptor, lambda **kwargs: None)
    registry.register(descriptor, lambda **kwargs: 'replaced', replace=True)
    assert registry.create(ComponentType.POST_PROCESSOR, 'noop') == 'replaced'

    assert registry.unregister(ComponentType.POST_PROCESSOR, 'noop')
    assert not registry.has(ComponentType.POST_PROCESSOR, 'noop')


def test_descriptor_to_dict():
    registry = build_default_registry()
    info = registry.get_descriptor(ComponentType.OVERLAP_PROCESSOR, 'fbf').to_dict()
    assert info['component_type'] == 'OverlapProcessor'
    assert info['name'] == 'fbf'


# ===== 控制器 =====

def test_controller_requires_initialization(single_peak_curve):
    controller = StrategyController()
    assert not controller.is_initialized

    with pytest.raises(ControllerNotInitializedError):
        controller.process(None, single_peak_curve)
    with pytest.raises(ControllerNotInitializedError):
        controller.list_components()


def test_initialize_is_idempotent():
    controller = StrategyController()
    controller.initialize()
    controller.initialize()
    assert len(controller.list_predefined_strategies()) == 4


def test_predefined_strategies(controller):
    names = {s.name for s in controller.list_predefined_strategies()}
    assert names == {'simple_peaks', 'overlapping_peaks', 'complex_peaks', 'high_precision'}

    complex_peaks = controller.get_predefined_strategy('complex_peaks')
    assert complex_peaks.overlap_processing == 'extreme_overlap'
    assert complex_peaks.advanced_algorithm == 'emg_algorithm'


def test_automatic_mode_on_separated_peaks(controller, two_separated_peaks_curve):
    result = controller.process_with_result(None, two_separated_peaks_curve, {'mode': 'automatic'})

    assert result.mode == ProcessingMode.AUTOMATIC
    assert result.strategy.name == 'simple_peaks'
    assert len(result.peaks) == 2
    assert result.analysis.diagnostics['strategy'] == 'simple_peaks'


def test_automatic_mode_on_overlapping_peaks(controller, overlapping_curve):
    strategy = controller.select_strategy(None, overlapping_curve, {'mode': 'automatic'})
    assert strategy.name in ('overlapping_peaks', 'complex_peaks')


def test_predefined_mode(controller, overlapping_curve):
    peaks = controller.process(None, overlapping_curve,
                               {'mode': 'predefined', 'strategy_name': 'overlapping_peaks'})

    assert len(peaks) == 2
    assert all(p.overlap_resolved for p in peaks)
    assert all(p.metadata['overlap_method'] == 'fbf' for p in peaks)


def test_manual_mode(controller, single_peak_curve):
    strategy = {
        'name': 'custom',
        'peak_detection': 'simple',
        'overlap_processing': 'none',
        'fitting_method': 'lorentzian',
        'optimization_algorithm': 'levenberg_marquardt',
        'post_processing': 'quality_validation',
    }
    result = controller.process_with_result(None, single_peak_curve, {'mode': 'manual', 'strategy': strategy})

    assert result.strategy.name == 'custom'
    assert result.peaks[0].metadata['fit_model'] == 'lorentzian'
    assert 'validation_passed' in result.peaks[0].metadata


def test_hybrid_mode_overrides_slots(controller, two_separated_peaks_curve):
    config = {'mode': 'hybrid', 'overrides': {'fitting_method': 'bi_gaussian'}}
    result = controller.process_with_result(None, two_separated_peaks_curve, config)

    assert result.strategy.fitting_method == 'bi_gaussian'
    assert all(p.metadata['fit_model'] == 'bi_gaussian' for p in result.peaks)


def test_advanced_algorithm_refines_and_rescored(controller, single_peak_curve):
    result = controller.process_with_result(None, single_peak_curve,
                                            {'mode': 'predefined', 'strategy_name': 'high_precision'})
    assert result.peaks
    for peak in result.peaks:
        if not peak.overlap_resolved:
            assert peak.metadata['refinement'] == 'bi_gaussian'
        assert 0.0 <= peak.quality_score <= 1.0
        assert 'validation_passed' in peak.metadata


def test_existing_peaks_are_used(controller, two_separated_peaks_curve):
    candidates = PeakDetector().detect_peaks(two_separated_peaks_curve)[:1]
    peaks = controller.process(candidates, two_separated_peaks_curve,
                               {'mode': 'predefined', 'strategy_name': 'simple_peaks'})
    assert len(peaks) == 1
    assert peaks[0].center == pytest.approx(3.0, abs=0.01)


def test_manual_mode_with_unknown_component(controller, single_peak_curve):
    strategy = {'name': 'broken', 'fitting_method': 'unknown_method'}
    with pytest.raises(UnknownMethodError):
        controller.process(None, single_peak_curve, {'mode': 'manual', 'strategy': strategy})


def test_unknown_predefined_strategy(controller, single_peak_curve):
    with pytest.raises(UnknownMethodError):
        controller.process(None, single_peak_curve, {'mode': 'predefined', 'strategy_name': 'nope'})


@pytest.mark.parametrize('config', [
    {'mode': 'turbo'},
    {'mode': 'manual'},
    {'mode': 'predefined'},
    {'mode': 'automatic', 'unexpected': True},
])
def test_invalid_config_rejected_before_processing(controller, single_peak_curve, config):
    with pytest.raises(ConfigValidationError):
        controller.process(None, single_peak_curve, config)


def test_register_custom_strategy(controller, two_separated_peaks_curve):
    controller.register_strategy(ProcessingStrategy(name='cwt_only', peak_detection='cwt', overlap_processing='none'))
    result = controller.process_with_result(None, two_separated_peaks_curve,
                                            {'mode': 'predefined', 'strategy_name': 'cwt_only'})
    assert result.analysis.diagnostics['detection_method'] == 'cwt'

    with pytest.raises(ValueError):
        controller.register_strategy(ProcessingStrategy(name='cwt_only'))


def test_strategy_with_overrides_is_a_new_value():
    base = ProcessingStrategy(name='base')
    changed = base.with_overrides({'overlap_processing': 'fbf', 'note': 'x'})

    assert base.overlap_processing == 'auto'
    assert changed.overlap_processing == 'fbf'
    assert changed.configuration == {'note': 'x'}
    assert changed.to_dict()['name'] == 'base'


def test_characteristics_recommendations():
    assert CurveCharacteristics(0, 0.0, 0.0, 0.0).recommended_strategy() == 'simple_peaks'
    assert CurveCharacteristics(2, 0.3, 100.0, 0.0).recommended_strategy() == 'overlapping_peaks'
    assert CurveCharacteristics(2, 0.7, 5.0, 0.0).recommended_strategy() == 'complex_peaks'
    assert CurveCharacteristics(2, 0.7, 100.0, 0.5).recommended_strategy() == 'complex_peaks'
    assert CurveCharacteristics(2, 0.7, 100.0, 0.1).recommended_strategy() == 'overlapping_peaks'


def test_introspection(controller):
    descriptor = controller.get_component_descriptor(ComponentType.PEAK_DETECTOR, 'simple')
    assert descriptor.name == 'simple'
    schema = controller.get_config_schema('strategy')
    assert 'mode' in schema['properties']
    assert controller.validate_config('detection', {'sensitivity': 0.1}).sensitivity == 0.1
