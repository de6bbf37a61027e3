from __future__ import annotations

import triton
import triton.language as tl


@triton.jit
def centroid_lookback_kernel(
    pixels_ptr,        # float32 [n_pixels * 4], RGBA
    assignment_ptr,    # int32 [n_pixels]
    centroids_ptr,     # float32 [K * 4], updated in place for `cluster`
    convergence_ptr,   # int32 [K + 1]
    flags_ptr,         # int32 [n_groups], epoch-tagged status words
    slots_ptr,         # float32 [n_groups * SLOTS_PER_GROUP]
    livelock_ptr,      # int32 [1]
    ticket_ptr,        # int32 [1], zeroed by the host before each dispatch
    cluster,
    epoch,
    epsilon,
    n_pixels,
    max_spins,
    K: tl.constexpr,
    K_PAD: tl.constexpr,
    N_SEQ: tl.constexpr,
    BLOCK: tl.constexpr,
    NOT_READY: tl.constexpr,
    AGGREGATE_READY: tl.constexpr,
    PREFIX_READY: tl.constexpr,
    STATUS_STRIDE: tl.constexpr,
    PREFIX_SLOT: tl.constexpr,
    AGGREGATE_SLOT: tl.constexpr,
    SLOTS_PER_GROUP: tl.constexpr,
    EMPTY_POLICY: tl.constexpr,
):
    """
    One program = one group of BLOCK workers covering BLOCK * N_SEQ pixels.

    Computes the sum of (r, g, b, 1) over pixels assigned to `cluster` with a
    single-pass decoupled look-back scan across programs. The last program
    turns the grand total into the new centroid and the convergence bit.

    The logical group index comes from an atomic ticket, not tl.program_id:
    a program only waits on groups whose tickets were taken before its own,
    so the look-back never depends on the order programs are scheduled in.

    Program-scalar atomics are issued once per program; they carry the
    publish / look-back protocol.

    EMPTY_POLICY (cluster without pixels):
      0: keep the convergence slot, 1: write 0, 2: write 1
    """
    last_group = tl.num_programs(0) - 1
    base = epoch * STATUS_STRIDE

    # Previous round already converged every cluster: leave every buffer untouched
    done = tl.load(convergence_ptr + K, volatile=True)
    if done != K:
        group = tl.atomic_add(ticket_ptr, 1)
        tl.atomic_xchg(flags_ptr + group, base + NOT_READY, sem="release")

        lanes = tl.arange(0, BLOCK)
        comp = tl.arange(0, 4)

        # Masked accumulation: worker i folds pixels [i*N_SEQ, (i+1)*N_SEQ)
        first = (group * BLOCK + lanes) * N_SEQ
        acc = tl.zeros((BLOCK, 4), dtype=tl.float32)
        for j in range(N_SEQ):
            idx = first + j
            inside = idx < n_pixels
            a = tl.load(assignment_ptr + idx, mask=inside, other=-1)
            hit = inside & (a == cluster)
            rgba = tl.load(pixels_ptr + idx[:, None] * 4 + comp[None, :], mask=hit[:, None], other=0.0)
            val = tl.where(comp[None, :] == 3, 1.0, rgba)
            acc += tl.where(hit[:, None], val, 0.0)

        # Group-local inclusive scan; the last worker holds the group aggregate
        scan = tl.cumsum(acc, axis=0)
        local_total = tl.sum(tl.where(lanes[:, None] == BLOCK - 1, scan, 0.0), axis=0)

        own = slots_ptr + group * SLOTS_PER_GROUP
        tl.store(own + AGGREGATE_SLOT + comp, local_total)
        if group == 0:
            tl.store(own + PREFIX_SLOT + comp, local_total)
            tl.debug_barrier()
            tl.atomic_xchg(flags_ptr + group, base + PREFIX_READY, sem="release")
        else:
            tl.debug_barrier()
            tl.atomic_xchg(flags_ptr + group, base + AGGREGATE_READY, sem="release")

        # Decoupled look-back
        exclusive = tl.zeros((4,), dtype=tl.float32)
        if group > 0:
            look = group - 1
            resolved = 0
            spins = 0
            while resolved == 0:
                word = tl.atomic_add(flags_ptr + look, 0, sem="acquire")
                status = tl.where(word >= base, word - base, NOT_READY)
                prior = slots_ptr + look * SLOTS_PER_GROUP
                if status == PREFIX_READY:
                    exclusive += tl.load(prior + PREFIX_SLOT + comp, volatile=True)
                    resolved = 1
                elif status == AGGREGATE_READY:
                    exclusive += tl.load(prior + AGGREGATE_SLOT + comp, volatile=True)
                    look -= 1
                else:
                    spins += 1
                    if spins >= max_spins:
                        tl.atomic_xchg(livelock_ptr, 1)
                        resolved = 1

            tl.store(own + PREFIX_SLOT + comp, exclusive + local_total)
            tl.debug_barrier()
            tl.atomic_xchg(flags_ptr + group, base + PREFIX_READY, sem="release")

        tl.debug_barrier()

        # Finalization on the last group
        if group == last_group:
            total = exclusive + local_total
            count = tl.sum(tl.where(comp == 3, total, 0.0), axis=0)
            bit = tl.load(convergence_ptr + cluster, volatile=True)
            if count > 0.0:
                prev = tl.load(centroids_ptr + cluster * 4 + comp)
                new = total / count
                diff = new - prev
                dist = tl.sqrt(tl.sum(diff * diff, axis=0))
                tl.store(centroids_ptr + cluster * 4 + comp, new)
                bit = (dist < epsilon).to(tl.int32)
                tl.atomic_xchg(convergence_ptr + cluster, bit)
            else:
                if EMPTY_POLICY != 0:
                    bit = tl.zeros_like(bit) + (EMPTY_POLICY - 1)
                    tl.atomic_xchg(convergence_ptr + cluster, bit)

            if cluster == K - 1:
                kk = tl.arange(0, K_PAD)
                bits = tl.load(convergence_ptr + kk, mask=kk < K, other=0, volatile=True)
                bits = tl.where(kk == cluster, bit, bits)
                tl.atomic_xchg(convergence_ptr + K, tl.sum(bits, axis=0))
