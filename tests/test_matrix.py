import pytest

from recordloader.matrix import config_id, config_product
from recordloader.models import Operation, TransportKind


class TestConfigProduct:
    def test_cartesian_product_in_axis_order(self, base_settings):
        configs = config_product(
            base_settings, transport=list(TransportKind), operation=list(Operation)
        )
        assert [(c.transport, c.operation) for c in configs] == [
            (TransportKind.SYNCHRONOUS, Operation.INSERT),
            (TransportKind.SYNCHRONOUS, Operation.UPDATE),
            (TransportKind.BULK, Operation.INSERT),
            (TransportKind.BULK, Operation.UPDATE),
        ]

    def test_other_settings_inherited(self, base_settings):
        configs = config_product(base_settings, max_batch_size=[1, 10])
        assert [c.max_batch_size for c in configs] == [1, 10]
        assert all(c.bulk_poll_interval == base_settings.bulk_poll_interval for c in configs)
        assert base_settings.max_batch_size is None

    def test_no_axes_gives_base_copy(self, base_settings):
        assert config_product(base_settings) == [base_settings]

    def test_unknown_axis(self, base_settings):
        with pytest.raises(ValueError, match="use_bulk"):
            config_product(base_settings, use_bulk=[True, False])

    def test_ids(self, base_settings):
        configs = config_product(base_settings, transport=list(TransportKind), max_batch_size=[5])
        axes = ("transport", "max_batch_size")
        assert [config_id(c, axes) for c in configs] == [
            "transport=synchronous-max_batch_size=5",
            "transport=bulk-max_batch_size=5",
        ]
