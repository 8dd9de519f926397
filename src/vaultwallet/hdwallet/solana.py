"""Solana key derivation using SLIP-10 ed25519.

Derivation path: m/44'/501'/index'/0'
Address format: base58 ed25519 public key

Every level is hardened (ed25519 has no public derivation), and the
account level carries the index, matching Phantom and Solflare.
"""

from bip_utils import Bip44, Bip44Changes, Bip44Coins, SolAddrEncoder

from vaultwallet.hdwallet.base import HDDeriver, KeyMaterial


class SolanaDeriver(HDDeriver):
    """Derives ed25519 keys and base58 addresses."""

    def get_derivation_path(self, index: int) -> str:
        self.check_index(index)
        return f"m/{self.purpose}'/{self.coin_type}'/{index}'/0'"

    def derive_key(self, seed: bytes, index: int) -> KeyMaterial:
        path = self.get_derivation_path(index)
        bip44 = Bip44.FromSeed(seed, Bip44Coins.SOLANA)
        node = bip44.Purpose().Coin().Account(index).Change(Bip44Changes.CHAIN_EXT)
        # bip_utils prefixes ed25519 public keys with 0x00
        public_key = node.PublicKey().RawCompressed().ToBytes()[1:]
        return KeyMaterial(
            chain=self.chain,
            path=path,
            private_key=bytearray(node.PrivateKey().Raw().ToBytes()),
            public_key=public_key,
        )

    def encode_address(self, public_key: bytes) -> str:
        return SolAddrEncoder.EncodeKey(public_key)
