"""Tests for installer_opr.ledger module."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from installer_opr.ledger import CheckpointLedger, LedgerError


class TestCheckpointLedger:
    """Tests for CheckpointLedger."""

    def test_missing_ledger_checkpoints_nothing(self, tmp_path):
        ledger = CheckpointLedger(tmp_path / 'run' / 'x.ckp')
        assert ledger.exists is False
        assert ledger.is_checkpointed('sw1') is False
        assert ledger.entries() == []

    def test_checkpoint_then_lookup(self, tmp_path):
        ledger = CheckpointLedger(tmp_path / 'x.ckp')
        ledger.checkpoint('sw1')
        assert ledger.is_checkpointed('sw1') is True
        assert ledger.is_checkpointed('sw2') is False

    def test_checkpoint_creates_parent(self, tmp_path):
        ledger = CheckpointLedger(tmp_path / 'a' / 'b' / 'x.ckp')
        ledger.checkpoint('sw1')
        assert ledger.path.exists()

    def test_file_format(self, tmp_path):
        ledger = CheckpointLedger(tmp_path / 'x.ckp')
        ledger.checkpoint('sw1')
        ledger.checkpoint('sw2')
        assert ledger.path.read_text() == 'sw1\nsw2\n'

    def test_exact_match_only(self, tmp_path):
        ledger = CheckpointLedger(tmp_path / 'x.ckp')
        ledger.checkpoint('sw10')
        assert ledger.is_checkpointed('sw1') is False
        assert ledger.is_checkpointed('sw10') is True

    def test_case_sensitive(self, tmp_path):
        ledger = CheckpointLedger(tmp_path / 'x.ckp')
        ledger.checkpoint('SW1')
        assert ledger.is_checkpointed('sw1') is False

    def test_duplicates_kept(self, tmp_path):
        ledger = CheckpointLedger(tmp_path / 'x.ckp')
        ledger.checkpoint('sw1')
        ledger.checkpoint('sw1')
        assert ledger.entries() == ['sw1', 'sw1']
        assert ledger.is_checkpointed('sw1') is True

    def test_survives_new_instance(self, tmp_path):
        path = tmp_path / 'x.ckp'
        CheckpointLedger(path).checkpoint('sw1')
        assert CheckpointLedger(path).is_checkpointed('sw1') is True

    @pytest.mark.parametrize('name', ['', None])
    def test_checkpoint_empty_name(self, tmp_path, name):
        ledger = CheckpointLedger(tmp_path / 'x.ckp')
        with pytest.raises(LedgerError):
            ledger.checkpoint(name)
        assert not ledger.path.exists()

    def test_lookup_empty_name(self, tmp_path):
        with pytest.raises(LedgerError):
            CheckpointLedger(tmp_path / 'x.ckp').is_checkpointed('')

    def test_multiline_name_rejected(self, tmp_path):
        with pytest.raises(LedgerError):
            CheckpointLedger(tmp_path / 'x.ckp').checkpoint('a\nb')

    def test_create_and_remove(self, tmp_path):
        ledger = CheckpointLedger(tmp_path / 'run' / 'x.ckp')
        ledger.create()
        assert ledger.exists
        assert ledger.entries() == []

        ledger.checkpoint('sw1')
        ledger.create()  # must not truncate
        assert ledger.entries() == ['sw1']

        ledger.remove()
        assert not ledger.exists
        ledger.remove()  # already gone
