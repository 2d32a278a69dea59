import unittest
from unittest.mock import patch, MagicMock
import os
import sys
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
import main
from src.errors import InvalidImageError


class TestMain(unittest.TestCase):

    def run_main(self, mock_config, mock_logging, mock_orchestrator, argv):
        mock_config.return_value.get.side_effect = lambda key, default=None: default
        mock_logging.return_value = (MagicMock(), "logs/run_x.log")
        store = MagicMock()
        mock_orchestrator.build_service.return_value = (MagicMock(), store)
        return main.main(argv), store

    @patch('main.orchestrator')
    @patch('main.setup_logging')
    @patch('main.Config')
    def test_successful_run(self, mock_config, mock_logging, mock_orchestrator):
        code, store = self.run_main(mock_config, mock_logging, mock_orchestrator, ["logo.png", "--out", "icons"])

        self.assertEqual(code, 0)
        mock_orchestrator.run.assert_called_once()
        args, kwargs = mock_orchestrator.run.call_args
        self.assertEqual(args, ("logo.png",))
        self.assertEqual(kwargs["out_dir"], "icons")
        # The icons written to --out are copies; the store keeps nothing on disk
        mock_orchestrator.build_service.assert_called_once_with(mock_config.return_value, materialize=False)
        store.close.assert_called_once()

    @patch('main.orchestrator')
    @patch('main.setup_logging')
    @patch('main.Config')
    def test_conversion_error_returns_nonzero(self, mock_config, mock_logging, mock_orchestrator):
        mock_orchestrator.run.side_effect = InvalidImageError("Only PNG and JPG files are allowed")
        code, store = self.run_main(mock_config, mock_logging, mock_orchestrator, ["logo.gif"])

        self.assertEqual(code, 1)
        store.close.assert_called_once()

if __name__ == '__main__':
    unittest.main()
