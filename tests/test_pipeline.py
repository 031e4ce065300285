"""
Tests for AutoModel persistence and the inference pipeline.
"""

import json

import pytest
import torch

from rwkvinfer.data.tokenizers import TRIE_TOKENIZER
from rwkvinfer.inference import InferencePipeline, SessionStatus
from rwkvinfer.models import AutoModel, RWKVConfig, save_checkpoint

from conftest import make_config, make_weights


@pytest.fixture
def model_dir(tmp_path, tiny_model):
    path = tmp_path / "tiny"
    AutoModel.save_pretrained(tiny_model, str(path))
    return path


class TestAutoModel:

    @pytest.mark.parametrize("save_format", ["safetensors", "pth"])
    def test_save_load_round_trip(self, tmp_path, tiny_model, save_format):
        path = tmp_path / save_format
        AutoModel.save_pretrained(tiny_model, str(path), save_format=save_format)
        assert (path / "config.json").exists()
        assert (path / f"model.{save_format}").exists()

        loaded = AutoModel.from_pretrained(str(path))
        assert loaded.config == tiny_model.config
        a = tiny_model.forward_sequence([1, 45, 22])[0]
        b = loaded.forward_sequence([1, 45, 22])[0]
        assert torch.equal(a, b)

    def test_bare_checkpoint_infers_config(self, tmp_path, tiny_config, tiny_weights):
        path = tmp_path / "rwkv7-tiny.pth"
        save_checkpoint(tiny_weights, str(path))
        model = AutoModel.from_pretrained(str(path))
        assert model.config == tiny_config
        assert model.weights_loaded

    def test_explicit_config_wins(self, tmp_path, tiny_weights):
        path = tmp_path / "w.pth"
        save_checkpoint(tiny_weights, str(path))
        config = make_config(eos_token_id=7)
        assert AutoModel.from_pretrained(str(path), config=config).config.eos_token_id == 7

    def test_bad_save_format(self, tmp_path, tiny_model):
        with pytest.raises(ValueError):
            AutoModel.save_pretrained(tiny_model, str(tmp_path), save_format="bin")

    def test_missing_path(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            AutoModel.from_pretrained(str(tmp_path / "absent"))

    def test_unknown_model_type(self):
        with pytest.raises(ValueError):
            AutoModel._get_model_class("gpt2")


class TestInferencePipeline:

    def test_from_directory(self, model_dir, vocab_file, tiny_model, capsys):
        pipeline = InferencePipeline(model_path=str(model_dir), vocab_path=str(vocab_file))
        assert "[OK] Model loaded" in capsys.readouterr().out
        assert pipeline.config.vocab_size == 300

        tokens = pipeline.encode("hello world")
        expected = tiny_model.forward_sequence(tokens)[0]
        assert torch.equal(pipeline.prompt_logits("hello world"), expected)
        assert pipeline.decode(tokens) == "hello world"

    def test_quiet(self, model_dir, vocab_file, capsys):
        InferencePipeline(model_path=str(model_dir), vocab_path=str(vocab_file), verbose=False)
        assert capsys.readouterr().out == ""

    def test_next_token_probs(self, model_dir, vocab_file):
        pipeline = InferencePipeline(model_path=str(model_dir), vocab_path=str(vocab_file), verbose=False)
        probs = pipeline.next_token_probs("he")
        assert probs.shape == (300,)
        assert probs.sum().item() == pytest.approx(1.0, abs=1e-5)
        assert pipeline.prompt_logits([1, 2], full_output=True).shape == (2, 300)

    def test_cpu_half_precision_falls_back(self, model_dir, vocab_file):
        with pytest.warns(UserWarning, match="fp32"):
            pipeline = InferencePipeline(model_path=str(model_dir), vocab_path=str(vocab_file),
                                         precision="fp16", verbose=False)
        assert pipeline.model.dtype == torch.float32

    def test_tokenizer_larger_than_model(self, tmp_path, vocab_file):
        config = make_config(vocab_size=200)
        path = tmp_path / "small.pth"
        save_checkpoint(make_weights(config), str(path))
        with pytest.raises(ValueError, match="larger"):
            InferencePipeline(model_path=str(path), vocab_path=str(vocab_file), verbose=False)

    def test_model_config_file(self, tmp_path, vocab_file):
        config = make_config(n_layer=2, n_embd=64, head_size=16,
                             dim_att_lora=8, dim_aaa_lora=8, dim_mv_lora=8, dim_gate_lora=8)
        weights_path = tmp_path / "weights.pth"
        save_checkpoint(make_weights(config), str(weights_path))
        preset = tmp_path / "preset.json"
        preset.write_text(json.dumps({
            "model_name": "tiny",
            "model_file": str(weights_path),
            "architecture": {"n_layer": 2, "n_embd": 64, "vocab_size": 300,
                             "head_size": 16, "dim_ffn": 64},
            "lora_dims": {"dim_att_lora": 8, "dim_aaa_lora": 8,
                          "dim_mv_lora": 8, "dim_gate_lora": 8},
        }))
        pipeline = InferencePipeline(model_config=str(preset), vocab_path=str(vocab_file), verbose=False)
        assert pipeline.config.n_head == 4

    def test_requires_a_source(self, vocab_file):
        with pytest.raises(ValueError):
            InferencePipeline(vocab_path=str(vocab_file))

    def test_sessions_from_components(self, tiny_model, vocab_file):
        pipeline = InferencePipeline.from_components(tiny_model, TRIE_TOKENIZER(str(vocab_file)))
        a = pipeline.new_session()
        b = pipeline.new_session()
        assert a.status is SessionStatus.READY
        a.feed(pipeline.encode("hello"))
        assert b.state.equal(tiny_model.init_state())
        assert a.state is not b.state


def test_config_json_written(model_dir, tiny_config):
    assert RWKVConfig.from_pretrained(str(model_dir)) == tiny_config
