"""EVM key derivation using BIP44.

Derivation path: m/44'/60'/0'/0/index
Address format: 0x... (EIP-55 checksum encoded)

Ethereum, Polygon and BNB Chain share this key space.
"""

from bip_utils import Bip44, Bip44Changes, Bip44Coins, EthAddrEncoder

from vaultwallet.hdwallet.base import HDDeriver, KeyMaterial


class EVMDeriver(HDDeriver):
    """Derives secp256k1 keys and checksummed 0x addresses."""

    def derive_key(self, seed: bytes, index: int) -> KeyMaterial:
        path = self.get_derivation_path(index)
        bip44 = Bip44.FromSeed(seed, Bip44Coins.ETHEREUM)
        node = bip44.Purpose().Coin().Account(0).Change(Bip44Changes.CHAIN_EXT).AddressIndex(index)
        return KeyMaterial(
            chain=self.chain,
            path=path,
            private_key=bytearray(node.PrivateKey().Raw().ToBytes()),
            public_key=node.PublicKey().RawCompressed().ToBytes(),
        )

    def encode_address(self, public_key: bytes) -> str:
        return EthAddrEncoder.EncodeKey(public_key)
