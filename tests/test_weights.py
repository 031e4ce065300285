"""
Tests for weight archive validation and loading.
"""

import pytest
import torch

from rwkvinfer.errors import MissingWeightKey, ShapeMismatch
from rwkvinfer.models import RWKV7Model, load_checkpoint, save_checkpoint, validate_weights

from conftest import make_config, make_weights


class TestValidation:

    def test_missing_key(self, tiny_config, tiny_weights):
        del tiny_weights["blocks.2.att.k_k"]
        del tiny_weights["head.weight"]
        with pytest.raises(MissingWeightKey) as exc_info:
            validate_weights(tiny_config, tiny_weights)
        assert exc_info.value.keys == ["blocks.2.att.k_k", "head.weight"]
        assert "blocks.2.att.k_k" in str(exc_info.value)
        assert isinstance(exc_info.value, KeyError)

    def test_shape_mismatch(self, tiny_config, tiny_weights):
        tiny_weights["blocks.1.att.w1"] = torch.zeros(32, 16)
        with pytest.raises(ShapeMismatch) as exc_info:
            validate_weights(tiny_config, tiny_weights)
        assert exc_info.value.key == "blocks.1.att.w1"
        assert exc_info.value.expected == (32, 8)
        assert exc_info.value.actual == (32, 16)

    def test_vocab_mismatch_on_head(self, tiny_config, tiny_weights):
        tiny_weights["head.weight"] = torch.zeros(299, 32)
        with pytest.raises(ShapeMismatch):
            validate_weights(tiny_config, tiny_weights)

    def test_rwkv_lm_vectors_reshaped(self, tiny_config, tiny_weights):
        assert tiny_weights["blocks.0.att.x_r"].shape == (1, 1, 32)
        normalized = validate_weights(tiny_config, tiny_weights)
        assert normalized["blocks.0.att.x_r"].shape == (32,)
        assert normalized["blocks.0.att.r_k"].shape == (4, 8)

    def test_flat_vectors_accepted(self, tiny_config):
        weights = make_weights(tiny_config, rwkv_lm_layout=False)
        validate_weights(tiny_config, weights)

    def test_non_tensor_rejected(self, tiny_config, tiny_weights):
        tiny_weights["ln_out.bias"] = [0.0] * 32
        with pytest.raises(TypeError):
            validate_weights(tiny_config, tiny_weights)

    def test_unused_keys_warn(self, tiny_config, tiny_weights):
        # official checkpoints carry layer-0 value residual weights
        tiny_weights["blocks.0.att.v0"] = torch.zeros(1, 1, 32)
        with pytest.warns(UserWarning, match="unused"):
            validate_weights(tiny_config, tiny_weights)

    def test_model_rejects_bad_archive_before_copy(self, tiny_config, tiny_weights):
        model = RWKV7Model(tiny_config)
        tiny_weights["blocks.0.ffn.key.weight"] = torch.zeros(32, 32)
        with pytest.raises(ShapeMismatch):
            model.load_weights(tiny_weights)
        assert not model.weights_loaded


class TestCheckpointFiles:

    @pytest.mark.parametrize("filename", ["model.pth", "model.safetensors"])
    def test_round_trip(self, tmp_path, tiny_weights, filename):
        path = str(tmp_path / filename)
        save_checkpoint(tiny_weights, path)
        loaded = load_checkpoint(path)
        assert set(loaded) == set(tiny_weights)
        for key, tensor in tiny_weights.items():
            assert torch.equal(loaded[key], tensor), key

    def test_directory(self, tmp_path, tiny_weights):
        save_checkpoint(tiny_weights, str(tmp_path / "model.safetensors"))
        loaded = load_checkpoint(str(tmp_path))
        assert torch.equal(loaded["emb.weight"], tiny_weights["emb.weight"])

    def test_wrapped_model_key(self, tmp_path, tiny_weights):
        path = str(tmp_path / "ckpt.pth")
        torch.save({"model": tiny_weights}, path)
        assert set(load_checkpoint(path)) == set(tiny_weights)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_checkpoint(str(tmp_path / "nope.pth"))
        with pytest.raises(FileNotFoundError):
            load_checkpoint(str(tmp_path))

    def test_loaded_checkpoint_drives_model(self, tmp_path):
        config = make_config(n_layer=2)
        weights = make_weights(config, seed=5)
        save_checkpoint(weights, str(tmp_path / "model.pth"))
        a = RWKV7Model(config).load_weights(load_checkpoint(str(tmp_path)))
        b = RWKV7Model(config).load_weights(weights)
        assert torch.equal(a(3, a.init_state()), b(3, b.init_state()))
