"""
Controller Base Class

Controllers are plain classes; subclassing ``Controller`` is optional and
only documents the class-level configuration the extractor reads.
"""


class Controller:
    """
    Base Controller class.

    One instance per controller type is created lazily in each worker and
    reused for every request routed to it, so per-request state must not
    be stored on ``self``. Controllers are constructed without arguments.

    Class Attributes:
        prefix: URL prefix for all routes (e.g., "/users")

    Example:
        class UsersController(Controller):
            prefix = "/users"

            @GET("/{id<\\d+>}")
            @bind(PathVariable("id"))
            def show(self, id: int):
                return {"id": id}
    """

    prefix: str = ""
