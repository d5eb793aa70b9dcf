"""Test that the project setup is working correctly."""

import pump_signal_tracker


def test_version() -> None:
    """Test that version is defined."""
    assert pump_signal_tracker.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from pump_signal_tracker import alerter, detector, ingestor, outcome, state, storage

    # Just verify imports work
    assert ingestor is not None
    assert detector is not None
    assert state is not None
    assert outcome is not None
    assert alerter is not None
    assert storage is not None
