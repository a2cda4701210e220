"""
基本的なインポートテスト
すべての主要モジュールが正しくインポートできることを確認する
"""
import importlib

import pytest

MODULES = [
    "kidspeak.config",
    "kidspeak.models.schemas",
    "kidspeak.models.themes",
    "kidspeak.services.errors",
    "kidspeak.services.level_policy",
    "kidspeak.services.audio_codec",
    "kidspeak.services.openai_service",
    "kidspeak.services.evaluation_service",
    "kidspeak.services.realtime_service",
    "kidspeak.services.storage_service",
    "kidspeak.services.api_check_service",
    "kidspeak.services.session_service",
    "kidspeak.gui.api_key_dialog",
    "kidspeak.gui.practice_window",
]


@pytest.mark.parametrize("module_name", MODULES)
def test_imports(module_name):
    """主要モジュールのインポートをテスト（音声デバイスがなくても読み込める）"""
    importlib.import_module(module_name)
