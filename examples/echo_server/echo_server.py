"""An echo server over simulated connections; each accepted connection is served by a forked child."""
import cort


class Connection(object):
    def __init__(self, name, messages):
        self.name = name
        self.inbox = list(messages)
        self.outbox = []


class EchoServer(cort.Coroutine):
    def __init__(self, listener, ready):
        self.listener = listener  # Iterator over incoming connections.
        self.ready = ready  # Run queue shared with the scheduler.
        self.conn = None

    @cort.resumable
    def __call__(self):
        with cort.reenter(self):
            while True:
                self.conn = next(self.listener, None)
                if self.conn is None:
                    cort.suspend(cort.TERMINATE)
                cort.fork(self.ready.append(self.clone()))
                if cort.is_child():
                    break
                cort.suspend()  # Let the children run before accepting the next connection.

            # Child: echo one message per invocation.
            while self.conn.inbox:
                self.conn.outbox.append(self.conn.inbox.pop(0).upper())
                cort.suspend()


def handler(event):
    connections = [Connection("client%d" % i, ["msg %d.%d" % (i, j) for j in range(event["messages"])])
                   for i in range(event["clients"])]
    ready = []
    ready.append(EchoServer(iter(connections), ready))

    invocations = 0
    while ready:
        coro = ready.pop(0)
        coro()
        invocations += 1
        if not coro.is_finished():
            ready.append(coro)

    return {conn.name: conn.outbox for conn in connections}, invocations
