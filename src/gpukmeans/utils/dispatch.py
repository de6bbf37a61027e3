from __future__ import annotations


def compute_work_group_count(
    size: tuple[int, int],
    workgroup: tuple[int, int],
) -> tuple[int, int]:
    """Groups needed per axis to cover `size` with `workgroup`-sized tiles."""
    width, height = size
    workgroup_width, workgroup_height = workgroup
    x = (width + workgroup_width - 1) // workgroup_width
    y = (height + workgroup_height - 1) // workgroup_height
    return x, y


def next_power_of_two(n: int) -> int:
    if n <= 1:
        return 1
    return 1 << (int(n) - 1).bit_length()


def is_power_of_two(n: int) -> bool:
    return n > 0 and (n & (n - 1)) == 0
