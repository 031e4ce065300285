########################################################################################################
# The RWKV Language Model - https://github.com/BlinkDL/RWKV-LM
########################################################################################################

import ast
from typing import Dict, List, Optional, Tuple, Union

from rwkvinfer.errors import UnknownTokenId, VocabularyError


class TRIE:
    """256-way byte trie; each node stores the (bytes, id) entries ending at it."""

    __slots__ = ("ch", "to", "values", "front")
    to: list
    values: set

    def __init__(self, front=None, ch=None):
        self.ch = ch
        self.to = [None] * 256
        self.values = set()
        self.front = front

    def __repr__(self):
        node = self
        path = []
        while node is not None:
            if node.ch is not None:
                path.append(node.ch)
            node = node.front
        return "<TRIE %s %s>" % (path[::-1], self.values)

    def add(self, key: bytes, idx: int = 0, val=None):
        node = self
        while idx < len(key):
            ch = key[idx]
            if node.to[ch] is None:
                node.to[ch] = TRIE(front=node, ch=ch)
            node = node.to[ch]
            idx += 1
        node.values.add(key if val is None else val)
        return node

    def find_longest(self, key: bytes, idx: int = 0) -> Tuple[int, "TRIE", set]:
        """Walk from key[idx] and return the end of the longest stored match."""
        u: TRIE = self
        ret = None
        while idx < len(key) and u.to[key[idx]] is not None:
            u = u.to[key[idx]]
            idx += 1
            if u.values:
                ret = idx, u, u.values
        return ret


class TRIE_TOKENIZER:
    """
    Byte-level RWKV tokenizer (greedy longest match over the vocabulary).

    Vocabulary file format, one entry per line::

        <id> <python str or bytes literal> <byte length>

    Every single byte value must have an entry so that encoding never fails.
    """

    def __init__(self, file_name: str, eos_token: Optional[Union[str, int]] = None):
        self.idx2token: Dict[int, bytes] = {}
        with open(file_name, "r", encoding="utf-8") as f:
            lines = f.readlines()
        for lineno, line in enumerate(lines, 1):
            line = line.rstrip("\n")
            if not line.strip():
                continue
            idx, token = self._parse_line(line, file_name, lineno)
            self.idx2token[idx] = token

        self.token2idx: Dict[bytes, int] = {v: k for k, v in self.idx2token.items()}

        missing = [b for b in range(256) if bytes([b]) not in self.token2idx]
        if missing:
            raise VocabularyError(
                f"Vocabulary {file_name} lacks single-byte entries for "
                f"{len(missing)} byte values (first: {missing[0]:#04x})"
            )

        # Vocab size: use max(token_id) + 1, not len(idx2token)
        self.vocab_size = max(self.idx2token.keys()) + 1

        self._build_trie()

        if eos_token is None:
            eos_token = "\n\n"
        if isinstance(eos_token, str):
            eos_tokens = self.encode(eos_token)
            self.eos_token_id = eos_tokens[0] if eos_tokens else None
        elif isinstance(eos_token, int):
            self.eos_token_id = eos_token if eos_token in self.idx2token else None
        else:
            self.eos_token_id = None

    @staticmethod
    def _parse_line(line: str, file_name: str, lineno: int) -> Tuple[int, bytes]:
        try:
            idx = int(line[:line.index(" ")])
            x = ast.literal_eval(line[line.index(" "):line.rindex(" ")].strip())
            length = int(line[line.rindex(" "):])
        except (ValueError, SyntaxError) as e:
            raise VocabularyError(f"{file_name}:{lineno}: cannot parse entry {line!r}") from e
        x = x.encode("utf-8") if isinstance(x, str) else x
        if not isinstance(x, bytes):
            raise VocabularyError(f"{file_name}:{lineno}: entry is neither str nor bytes")
        if len(x) != length:
            raise VocabularyError(
                f"{file_name}:{lineno}: declared length {length} but entry has {len(x)} bytes"
            )
        return idx, x

    def _build_trie(self):
        self.root = TRIE()
        for t, i in self.token2idx.items():
            self.root.add(t, val=(t, i))

    def __len__(self):
        """Return vocab size, supports len(tokenizer)"""
        return self.vocab_size

    def __getstate__(self):
        """Serialize only the tables; the trie has parent back-references."""
        return {
            "idx2token": self.idx2token,
            "token2idx": self.token2idx,
            "vocab_size": self.vocab_size,
            "eos_token_id": self.eos_token_id,
        }

    def __setstate__(self, state):
        self.idx2token = state["idx2token"]
        self.token2idx = state["token2idx"]
        self.vocab_size = state["vocab_size"]
        self.eos_token_id = state.get("eos_token_id", None)
        self._build_trie()

    def encode_bytes(self, src: bytes) -> List[int]:
        idx = 0
        tokens = []
        while idx < len(src):
            # single bytes are always present, so a match always exists
            idx, _, values = self.root.find_longest(src, idx)
            _, token = next(iter(values))
            tokens.append(token)
        return tokens

    def decode_bytes(self, tokens) -> bytes:
        tokens = self._as_list(tokens)
        parts = []
        for tid in tokens:
            try:
                parts.append(self.idx2token[tid])
            except KeyError:
                raise UnknownTokenId(tid, self.vocab_size) from None
        return b"".join(parts)

    def encode(self, src: str) -> List[int]:
        return self.encode_bytes(src.encode("utf-8"))

    def decode(self, tokens) -> str:
        """
        Decode token IDs to text.

        Args:
            tokens: token IDs (list, tuple, torch.Tensor, numpy.ndarray, etc.)

        Returns:
            Decoded string. Byte sequences that are not valid UTF-8 (e.g. a
            multi-byte character cut in half) are replaced with U+FFFD.

        Raises:
            UnknownTokenId: if any id is not in the vocabulary
        """
        return self.decode_bytes(tokens).decode("utf-8", errors="replace")

    @staticmethod
    def _as_list(tokens) -> List[int]:
        # Support torch.Tensor and numpy.ndarray
        if hasattr(tokens, "tolist"):
            tokens = tokens.tolist()
        elif not isinstance(tokens, (list, tuple)):
            tokens = list(tokens)
        return [int(t) for t in tokens]

    def token_repr(self, tokens) -> str:
        """Readable rendering of ids, e.g. ``'Hello'33155 ' world'1991``."""
        out = []
        for i in self._as_list(tokens):
            s = self.decode_bytes([i])
            try:
                s = s.decode("utf-8")
            except UnicodeDecodeError:
                pass
            out.append(f"{s!r}{i}")
        return " ".join(out)
