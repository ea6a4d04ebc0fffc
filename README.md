# zarr_tools

Helpers for building and re-encoding Zarr V3 arrays.

The package does four jobs:

- It reads codec, data type and fill value settings given as text, in the form a command line would take them.
- It builds Zarr V3 array metadata from a shape, a data type and a set of encoding choices. Sharding is optional.
- It changes the encoding of an existing array's metadata. The chunk shape, shard shape, codecs, separator, data type, fill value, dimension names and attributes can all be changed.
- It copies the data of one array into another chunk by chunk. Reads can go through a cache, written chunks can be checked, and timings are reported as the copy runs.

## Installation

```
pip install .
```

To install what the tests need as well:

```
pip install ".[test]"
```

## Modules

### `zarr_tools.codecs`

- `CodecKind` is the stage of the codec chain a codec belongs to. It is one of `ARRAY_TO_ARRAY`, `ARRAY_TO_BYTES` or `BYTES_TO_BYTES`.
- `codec_kind(name)` looks up the stage of a known codec name, such as `transpose`, `bytes`, `sharding_indexed`, `gzip`, `zstd` or `crc32c`.
- `parse_codec(metadata, expected_kind)` takes JSON text or a dict and returns normalised codec metadata.
- `parse_codec_list(text, expected_kind)` does the same for a JSON array of codecs.
- `CodecError` is a subclass of `ValueError`. The codec functions raise it for:
  - malformed JSON,
  - an unknown codec name,
  - unexpected keys,
  - a codec of the wrong kind.
- `parse_data_type(text)` accepts these data types and raises `ValueError` for any other:
  - `bool`,
  - the signed and unsigned integers,
  - `float16`, `float32`, `float64` and `bfloat16`,
  - `complex64` and `complex128`,
  - raw-bit types `rN`, where N is a multiple of 8.
- `parse_fill_value(text)` parses strict JSON and raises `ValueError` on bad input. Bare `NaN` or `Infinity` are rejected; quote them instead.

### `zarr_tools.builder`

`ArrayBuilder` is a dataclass that holds the settings of an array with a regular chunk grid:

- shape, data type, chunk shape and fill value,
- dimension names and attributes,
- separator, `/` or `.`,
- the three parts of the codec chain.

What it offers:

- `to_metadata()` checks the settings and returns the array metadata document.
- `ArrayBuilder.from_metadata(metadata)` loads existing metadata.
- `set_separator()` changes the separator.
- `codecs` and `is_sharded` are properties.

`sharding_codec(chunk_shape, inner_codecs)` returns `sharding_indexed` codec metadata. Its index is encoded with `bytes` and then `crc32c`, and sits at the end of each shard. `split_codec_chain(codecs)` splits a codec list into its three stages and checks their order.

### `zarr_tools.fill_value`

`fill_value_from_metadata(data_type, metadata)` checks that a fill value fits its data type:

- integers must be in range,
- floats may be numbers, `"NaN"`, `"Infinity"`, `"-Infinity"` or hex bit patterns,
- complex values are two-part lists,
- raw-bit values are lists of bytes.

`convert_fill_value(data_type_in, fill_value_in, data_type_out)` casts a fill value between the bool, integer and real float types. Integers wrap around. Floats are truncated and saturate when cast to integers.

### `zarr_tools.encoding`

`ZarrEncodingArgs` and `get_array_builder(encoding_args, array_shape, data_type, dimension_names)` build a new array. When a shard shape is given, the given codecs go inside the sharding codec.

### `zarr_tools.reencoding`

`ZarrReencodingArgs` holds overrides. A field left as `None` or `False` keeps the input's setting.

- `change_type()` returns a `ZarrReEncodingChangeType`. It is `NONE`, `METADATA` (dimension names or attributes only) or `METADATA_AND_CHUNKS`.
- `to_json()` writes only the settings that are set.

`get_array_builder_reencode(encoding_args, array_metadata, array_shape=None)` applies the overrides to existing metadata.

- If the input is sharded, its inner chunk shape and inner codecs are the starting point. Set `ignore_input_sharding` to drop the sharding.
- If the data type changes and no fill value is given, the old fill value is cast to the new type.

### `zarr_tools.reencode`

`do_reencode(array_in, array_out, validate=False, concurrent_chunks=None, progress_callback=None, cache_size=None, write_shape=None)` copies every chunk of the output grid from the input. It returns a `ReencodeResult` with these fields:

- `duration`,
- `duration_read`,
- `duration_write`,
- `bytes_decoded`.

Options:

- **`write_shape`**: with a sharded output, each shard is written in blocks of this shape.
- **`validate`**: reads each written chunk back and compares it with what was read. A mismatch raises `RuntimeError`.
- **`cache_size`**: a `CacheSize`, made with one of:
  - `CacheSize.size_total`,
  - `CacheSize.size_per_thread`,
  - `CacheSize.chunks_total`,
  - `CacheSize.chunks_per_thread`.

  It enables an LRU cache of decoded input chunks.
- **`concurrent_chunks`**: how many chunks are processed at once. `calculate_chunk_and_codec_concurrency(concurrent_target, concurrent_chunks, codec_concurrency, num_chunks)` splits a thread budget between chunks and codec work.

### `zarr_tools.progress`

`Progress(num_steps, callback)` works as follows:

- `read`, `process`, `process_step` and `write` each call a function and add its running time to the matching total.
- `next()` counts a finished step.
- `stats()` returns a `ProgressStats` snapshot, with durations in seconds.
- The callback receives a snapshot when the object is created and after every step.

## Shape rules

When a chunk or shard shape is given:

- A zero along a dimension means the full size of the array along that dimension.
- A shard shape is cut down to the array shape.
- A shard shape is then rounded up to a multiple of the chunk shape.

## Example

```python
from zarr_tools.encoding import ZarrEncodingArgs, get_array_builder

args = ZarrEncodingArgs(
    fill_value=0,
    chunk_shape=[32, 32],
    shard_shape=[0, 64],
    bytes_to_bytes_codecs='[{"name": "gzip", "configuration": {"level": 5}}]',
)
builder = get_array_builder(args, [100, 200], "uint16", ["y", "x"])
metadata = builder.to_metadata()
```

Here the shard shape becomes `[128, 64]`, and the gzip codec is applied inside each shard.

## What the package does not do

- **No storage.** It does not read or write Zarr stores and does not open arrays on disk. The builders produce metadata dictionaries only.
- **No codecs.** It does not implement the codecs themselves. It does not compress, decompress or encode chunk bytes.
- **Caller-supplied arrays.** `do_reencode` works on array objects the caller supplies. The input needs `shape`, `chunk_shape`, `data_type`, `retrieve_chunk` and `retrieve_array_subset`. The output also needs `is_sharded`, `store_chunk` and `store_array_subset`, and it exchanges numpy arrays.
- **No data type conversion.** `do_reencode` does not convert data types and raises `ValueError` when the input and output types differ.
- **No commands.** There is no command-line program.