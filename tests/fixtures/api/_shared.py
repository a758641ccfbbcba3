"""Not a controller unit; the compiler skips files starting with an underscore."""

raise RuntimeError("must not be imported by the compiler")
