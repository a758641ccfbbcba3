"""User routes used by the compiler and dispatcher tests."""

from typing import Annotated, Optional

from dispatchkit.controller import (
    ALL,
    DELETE,
    GET,
    POST,
    PUT,
    ClientIp,
    Controller,
    Header,
    MapBind,
    PathVariable,
    RawBody,
    RequestParam,
    TokenClaim,
    bind,
)
from dispatchkit.request import Request
from dispatchkit.response import HttpError, TextPayload


class UsersController(Controller):
    prefix = "/users"

    @GET("/{id<\\d+>}")
    @bind(PathVariable("id", default=-1))
    def show(self, id: int):
        return {"id": id}

    @GET("/")
    @bind(RequestParam("page", default=1), RequestParam("q"))
    def index(self, page: int, q: str):
        return {"page": page, "q": q}

    @GET("/search")
    @bind(RequestParam("q"))
    def search(self, q: str, page: int = 1, tag: Optional[str] = None):
        return {"q": q, "page": page, "tag": tag}

    @POST("/")
    @bind(MapBind("name", "age:int", "admin:bool:false"))
    def create(self, data: dict):
        return {"created": data}

    @PUT("/{id}")
    def update(self, id: int):
        return {"id": id}

    @DELETE("/{id}")
    def remove(self, id: Annotated[int, PathVariable()]):
        if id == 1:
            raise HttpError(403)
        return None

    @ALL("/ping")
    @bind(None, ClientIp())
    def ping(self, request: Request, ip: str):
        return {"method": request.method, "ip": ip}

    @GET("/me")
    @bind(TokenClaim("sub"), Header("x-trace-id"))
    def me(self, sub: str, trace: str):
        return {"sub": sub, "trace": trace}

    @POST("/echo")
    @bind(RawBody())
    def echo(self, body: str):
        return TextPayload(body)

    def helper(self):
        return "not a route"

    def _private(self):
        return "ignored"
