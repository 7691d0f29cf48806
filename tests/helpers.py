def assemble(*opcodes):
    return b"".join(op.to_bytes(2, "big") for op in opcodes)


def run(c8, steps):
    for _ in range(steps):
        c8.step()
