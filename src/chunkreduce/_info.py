import dataclasses
import textwrap


def human_readable_size(size: int) -> str:
    if size < 2**10:
        return f"{size}"
    elif size < 2**20:
        return f"{size / float(2**10):.1f}K"
    elif size < 2**30:
        return f"{size / float(2**20):.1f}M"
    elif size < 2**40:
        return f"{size / float(2**30):.1f}G"
    elif size < 2**50:
        return f"{size / float(2**40):.1f}T"
    else:
        return f"{size / float(2**50):.1f}P"


def byte_info(size: int) -> str:
    if size < 2**10:
        return str(size)
    else:
        return f"{size} ({human_readable_size(size)})"


@dataclasses.dataclass(kw_only=True)
class PlanInfo:
    """
    Visual summary for a ReductionPlan.

    Note that this class and its properties are not part of
    chunkreduce's public API.
    """

    _shape: tuple[int, ...]
    _chunk_shape: tuple[int, ...]
    _axis: int
    _kind: str
    _strategy: str
    _block_shape: tuple[int, ...]
    _nblocks: int
    _nchunks: int
    _max_block_nbytes: int
    _memory_budget_bytes: int

    def __repr__(self) -> str:
        template = textwrap.dedent("""\
        Shape              : {_shape}
        Chunk shape        : {_chunk_shape}
        Reduction axis     : {_axis}
        Reduction kind     : {_kind}""")

        if self._kind == "cumulative":
            template += "\nStrategy           : {_strategy}"

        template += textwrap.dedent("""
        Block shape        : {_block_shape}
        No. blocks         : {_nblocks}
        No. chunks         : {_nchunks}
        Largest block      : {_max_block_nbytes}
        Memory budget      : {_memory_budget_bytes}""")

        kwargs = {field.name: getattr(self, field.name) for field in dataclasses.fields(self)}
        kwargs["_max_block_nbytes"] = byte_info(self._max_block_nbytes)
        kwargs["_memory_budget_bytes"] = byte_info(self._memory_budget_bytes)
        return template.format(**kwargs)
