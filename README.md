# lbcluster

lbcluster is a small TCP cluster made of four commands:

- `lbcluster-balancer` is the **load balancer**. Clients connect to it on port 5059 and workers on port 6060.
- `lbcluster-worker` is a **worker**. It takes the lines the balancer sends it and appends each one to `workerOutput.txt`. It then sends the line back to the balancer and forwards a copy to the replicator.
- `lbcluster-replicator` is the **replicator**, on port 6061. It appends whatever the workers forward to `replicatorOutput.txt`.
- `lbcluster-client` is the **client**. It sends newline-terminated messages to the balancer and counts the acknowledgements that come back.

## How it works

The balancer reads client input line by line and gives each line a running id, starting at 0. It frames the line as `|<id>|<text>|` followed by a newline and puts it in its queue. It then hands the front of the queue to the worker that has the fewest messages in flight; on a tie the earliest connected worker wins. Finally it acknowledges the line to the client with `LB primio msg_id=<id>`.

Each time a worker replies, the balancer takes that worker's oldest in-flight message and sends `msg_id=<id> obradjeno: <framed message>` to the client the message came from.

When a worker joins and at least one other worker is already connected, the balancer rebalances. It sends `FREE_QUEUE` to every worker, and on that command a worker drops its pending lines. The balancer then takes back every in-flight message and spreads them out again.

When a worker disconnects, its in-flight messages go back into the queue and are handed to the workers that remain.

Messages, acknowledgements and stored lines are all cut to at most 255 bytes of UTF-8.

## Installation

```
pip install .
```

## Running a cluster

Start each command in its own terminal, in this order:

```
lbcluster-balancer
lbcluster-replicator
lbcluster-worker
lbcluster-client
```

You can start more than one worker. A worker that cannot reach the replicator still runs; it only skips the forwarding.

Options:

- `lbcluster-balancer --host --client-port --worker-port`
- `lbcluster-replicator --host --port --output`
- `lbcluster-worker --host --port --replicator-host --replicator-port --output`
- `lbcluster-client --host --port --option {1,2} --count`

If `--option` is not given, the client asks for one:

1. Type messages one by one. Enter `end`, or end the input, to stop.
2. Send `--count` random 20-letter messages (2000 by default). The client then waits until that many acknowledgements have arrived.

## Library use

The building blocks can also be imported on their own:

- `lbcluster.message`: `Message`, `MessageType`, `LineSplitter`, `frame_content`, `fit_content`
- `lbcluster.fifo`: `Fifo`, `EmptyQueueError`
- `lbcluster.workerinfo`: `WorkerHandle`, `WorkerFullError`
- `lbcluster.distributor`: `Distributor`, `find_most_free_worker`
- `lbcluster.balancer`: `LoadBalancer`
- `lbcluster.replicator`: `Replicator`, `save_line`
- `lbcluster.worker`: `WorkerNode`
- `lbcluster.client`: `Client`, `random_message`

The `LoadBalancer` and `Replicator` servers can be used as context managers. Their `close()` method stops `serve_forever()`.

## What it does not do

- A worker does no processing beyond storing a line and echoing it back.
- Nothing is persisted except the appended text files. The replicator keeps its copies in an in-memory queue that nothing reads.
- Lines that arrive while no worker is connected stay in the balancer's queue. They are sent out only when a later client line is dispatched or when workers are rebalanced.

## Tests

```
pip install .[test]
pytest
```