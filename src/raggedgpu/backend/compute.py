"""
Main compute facade composing the kernel families over one device context.
"""

import logging

from .concat import DeviceConcat
from .core import DeviceCore, get_core
from .elementwise import DeviceElementwise
from .embedding import DeviceEmbedding
from .fnn import DeviceFNN
from .learning import DeviceLearning
from .loss import DeviceLoss
from .normalization import DeviceNormalization
from .pooling import DevicePooling
from .transfer import DeviceTransfer

logger = logging.getLogger(__name__)


class DeviceCompute:
    """Batched kernel dispatch over ragged batches.

    Every kernel family is available as an attribute (``fnn``,
    ``elementwise``, ``concat``, ``pooling``, ``normalization``, ``loss``,
    ``embedding``, ``learning``, ``transfer``); the most common entry points
    are also forwarded from the facade itself.
    """

    def __init__(self, core: DeviceCore | None = None):
        """Bind to ``core`` or to the process-wide context from ``init_cuda``."""
        self.core = core if core is not None else get_core()

        self.transfer = DeviceTransfer(self.core)
        self.fnn = DeviceFNN(self.core)
        self.elementwise = DeviceElementwise(self.core)
        self.concat = DeviceConcat(self.core)
        self.pooling = DevicePooling(self.core)
        self.normalization = DeviceNormalization(self.core)
        self.loss = DeviceLoss(self.core)
        self.embedding = DeviceEmbedding(self.core)
        self.learning = DeviceLearning(self.core)
        logger.debug(f"DeviceCompute bound to device {self.core.config.device_id}")

    def synchronize(self):
        self.core.synchronize()

    def get_stats(self) -> dict:
        """Launch counts and memory pool statistics."""
        return self.core.get_stats()

    # ==================== Transfer ====================

    def memset(self, *args, **kwargs):
        return self.transfer.memset(*args, **kwargs)

    def batch_memset(self, *args, **kwargs):
        return self.transfer.batch_memset(*args, **kwargs)

    def copy_from_host_to_device(self, *args, **kwargs):
        return self.transfer.copy_from_host_to_device(*args, **kwargs)

    def copy_from_device_to_host(self, *args, **kwargs):
        return self.transfer.copy_from_device_to_host(*args, **kwargs)

    # ==================== Linear ====================

    def matrix_multiply_matrix(self, *args, **kwargs):
        return self.fnn.matrix_multiply_matrix(*args, **kwargs)

    def linear_forward(self, *args, **kwargs):
        return self.fnn.linear_forward(*args, **kwargs)

    def linear_backward(self, *args, **kwargs):
        return self.fnn.linear_backward(*args, **kwargs)

    # ==================== Elementwise ====================

    def activation_forward(self, *args, **kwargs):
        return self.elementwise.activation_forward(*args, **kwargs)

    def activation_backward(self, *args, **kwargs):
        return self.elementwise.activation_backward(*args, **kwargs)

    def dropout_forward(self, *args, **kwargs):
        return self.elementwise.dropout_forward(*args, **kwargs)

    def dropout_backward(self, *args, **kwargs):
        return self.elementwise.dropout_backward(*args, **kwargs)

    # ==================== Normalization / pooling ====================

    def softmax_forward(self, *args, **kwargs):
        return self.normalization.softmax_forward(*args, **kwargs)

    def softmax_backward(self, *args, **kwargs):
        return self.normalization.softmax_backward(*args, **kwargs)

    def pool_forward(self, *args, **kwargs):
        return self.pooling.pool_forward(*args, **kwargs)

    def pool_backward(self, *args, **kwargs):
        return self.pooling.pool_backward(*args, **kwargs)

    # ==================== Loss ====================

    def softmax_loss(self, *args, **kwargs):
        return self.loss.softmax_loss(*args, **kwargs)

    def cross_entropy_loss(self, *args, **kwargs):
        return self.loss.cross_entropy_loss(*args, **kwargs)

    # ==================== Embedding / learning ====================

    def lookup_forward(self, *args, **kwargs):
        return self.embedding.lookup_forward(*args, **kwargs)

    def lookup_backward(self, *args, **kwargs):
        return self.embedding.lookup_backward(*args, **kwargs)

    def update_adam(self, *args, **kwargs):
        return self.learning.update_adam(*args, **kwargs)

    def update_adam_sparse(self, *args, **kwargs):
        return self.learning.update_adam_sparse(*args, **kwargs)
