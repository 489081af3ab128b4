# hsmtool

Tools for working with keys and a payment HSM from Python.

## Installation

```
pip install .
```

To run the test suite as well:

```
pip install ".[test]"
pytest
```

## What is inside

### `hsmtool.crypto.bitwise`

`perform_bitwise(operation, block_a, block_b="")` applies a
`BitwiseOperation` (`XOR`, `AND`, `OR`, `NOT`) to hex blocks and returns
upper-case hex. `block_b` is ignored for `NOT`. Invalid hex, blocks of
different lengths and unknown operations raise `BitwiseError`.

### `hsmtool.crypto.des`

`process_des(DESParams(...))` encrypts or decrypts with single (8-byte),
double (16-byte, used as K1,K2,K1) or triple (24-byte) length DES, in
`CipherMode.ECB` or `CipherMode.CBC` (CBC needs an 8-byte `iv`). Data can
be padded with `PaddingMode.ISO97971` (zeros, nothing added when already
aligned) or `PaddingMode.ISO97972` (`0x80` then zeros, always at least one
byte); with `PaddingMode.NO_PADDING` the data must be a multiple of 8
bytes. Decryption does not remove padding. `pad(data, block_size, mode)`
is available on its own. `calculate_kcv(key)` returns the key check value:
the first three bytes of an all-zero block encrypted under the key, as
upper-case hex. Failures raise `DESError`.

### `hsmtool.crypto.key_share`

- `generate_key(length_bits, enforce_odd_parity=False)` returns a random
  key of 64, 128, 192 or 256 bits as lower-case hex, with its KCV.
- `split_key(key_hex, num_components)` returns at least two XOR components
  (lower-case hex) and the KCV of the key.
- `combine_components(components)` XORs components back into the key.
- `validate_component_consistency(original, components)` returns whether
  the components recombine to `original`.
- `adjust_parity(key)` returns the key with odd parity on every byte;
  `validate_key_parity(key)` checks it.

Errors are subclasses of `KeyShareError`: `InvalidKeyLengthError`,
`InvalidHexStringError`, `InvalidKeyFormatError` and
`InvalidComponentCountError`.

### `hsmtool.hsm`

- `hsmtool.hsm.broker`: `Pool` keeps up to `capacity` TCP connections to
  one `host:port` address, dialled on demand and dropped after
  `idle_timeout` seconds idle. `Broker` sends a request through its pools,
  at most `workers` at a time. Each message is framed with a two-byte
  big-endian length header, so requests are limited to 65535 bytes.
  `Broker.start()` blocks until `close()` is called. A closed broker or
  pool raises `BrokerClosedError`.
- `hsmtool.hsm.client`: `Client(config=None, broker=None, pool=None)` builds
  a pool and broker from a `Config` (`default_config()` gives pool size 5,
  2 workers, 5 s dial timeout, 60 s idle timeout). `send_command(cmd)`
  returns the response or raises `ClientError`; `close()` closes the pool.
  The client is also a context manager.
- `hsmtool.hsm.connection`: `Connection(state_changed=None)` manages a
  broker session. `connect(host, port, num_conns=1)` dials once to check
  the address and raises `ConnectionError_` if it cannot;
  `disconnect()`, `state()` (a `ConnectionState`), `pool_capacity()`,
  `last_error()`, `register_state_callback(callback)` and
  `execute_command(command, timeout=5.0)`. If the broker stops with an
  error, the connection tries to reconnect up to five times with
  exponential back-off (1 s doubling, at most 30 s).

### `hsmtool.storage.keys`

`KeyStore(store_path)` keeps `KeyEntry` records (name, `KeyType`, length,
check value, creation time) in a JSON file, creating its directory when
needed. `store(entry)` adds or replaces an entry and sets `created_at` if
it is missing; `get(name)` returns the entry or `None`; `list()` returns
all entries; `delete(name)` removes one. Every change is written to disk.
Failures raise `KeyStoreError`.

## Examples

```python
from hsmtool.crypto.bitwise import BitwiseOperation, perform_bitwise
from hsmtool.crypto.des import calculate_kcv
from hsmtool.crypto.key_share import combine_components, split_key

perform_bitwise(BitwiseOperation.XOR, "0123456789ABCDEF", "FEDCBA9876543210")
# 'FFFFFFFFFFFFFFFF'

calculate_kcv(bytes.fromhex("0123456789ABCDEF"))
# 'D5D44F'

components, kcv = split_key("0123456789abcdeffedcba9876543210", 3)
combine_components(components)
# '0123456789abcdeffedcba9876543210'
```

```python
from hsmtool.storage.keys import KeyEntry, KeyStore, KeyType

store = KeyStore("keys/keystore.json")
store.store(KeyEntry(name="zone-master", type=KeyType.ZMK, length=16, check_value="08D7B4"))
store.get("zone-master")
```

## What it does not do

There is no command-line tool and no graphical interface; everything is
used from Python. The HSM client sends raw command bytes and returns raw
responses: it does not build or parse HSM commands, and `Config.lmk_index`
is kept but not used. The key store holds key metadata only, never key
material.