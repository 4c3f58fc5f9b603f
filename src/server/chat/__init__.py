# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Chat streaming: session controller, stream relay and SSE wire events."""
