"""Bitcoin key derivation using BIP84 (Native SegWit).

Derivation path: m/84'/0'/0'/0/index
Address format: bech32 (bc1q...)
"""

from bip_utils import Bip44Changes, Bip84, Bip84Coins, P2WPKHAddrEncoder

from vaultwallet.hdwallet.base import HDDeriver, KeyMaterial

BECH32_HRP = "bc"
WITNESS_VERSION = 0


class BTCDeriver(HDDeriver):
    """Derives secp256k1 keys and P2WPKH addresses."""

    def derive_key(self, seed: bytes, index: int) -> KeyMaterial:
        path = self.get_derivation_path(index)
        bip84 = Bip84.FromSeed(seed, Bip84Coins.BITCOIN)
        node = bip84.Purpose().Coin().Account(0).Change(Bip44Changes.CHAIN_EXT).AddressIndex(index)
        return KeyMaterial(
            chain=self.chain,
            path=path,
            private_key=bytearray(node.PrivateKey().Raw().ToBytes()),
            public_key=node.PublicKey().RawCompressed().ToBytes(),
        )

    def encode_address(self, public_key: bytes) -> str:
        return P2WPKHAddrEncoder.EncodeKey(public_key, hrp=BECH32_HRP, wit_ver=WITNESS_VERSION)
