"""
Basic import tests for quant_calibration package.
"""


def test_import_package():
    """Test that the main package can be imported."""
    import quant_calibration

    assert quant_calibration is not None


def test_version():
    """Test that version is defined and valid."""
    import quant_calibration

    assert quant_calibration.__version__ == "1.0.0"
    assert quant_calibration.get_version() == "1.0.0"


def test_import_submodules():
    """Test that all submodules can be imported."""
    from quant_calibration import calibration, models, monitoring, pricing

    assert calibration is not None
    assert models is not None
    assert monitoring is not None
    assert pricing is not None


def test_public_api():
    """Test that the main entry points are exported at top level."""
    import quant_calibration

    for name in quant_calibration.__all__:
        assert hasattr(quant_calibration, name), name
