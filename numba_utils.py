import numpy as np
from numba import njit

@njit(cache=True)
def corr_coef(y: np.ndarray, x: np.ndarray):
    """
    Pearson correlation, NaN when either series is constant.
    """
    n = y.shape[0]
    mean_y = 0.0
    mean_x = 0.0
    for i in range(n):
        mean_y += y[i]
        mean_x += x[i]
    mean_y /= n
    mean_x /= n

    num = 0.0
    var_y = 0.0
    var_x = 0.0
    for i in range(n):
        dy = y[i] - mean_y
        dx = x[i] - mean_x
        num += dx * dy
        var_x += dx * dx
        var_y += dy * dy

    if var_x == 0.0 or var_y == 0.0:
        return np.nan
    return num / np.sqrt(var_x * var_y)

@njit(cache=True, nogil=True)
def sort_by_x(x: np.ndarray, y: np.ndarray):
    """
    Stable argsort of x, then reorder x and y with the same permutation.
    Ties keep their input order.
    """
    n = x.shape[0]
    order = np.argsort(x, kind="mergesort")

    xs = np.empty(n, dtype=np.float64)
    ys = np.empty(n, dtype=np.float64)
    for i in range(n):
        xs[i] = x[order[i]]
        ys[i] = y[order[i]]

    return order, xs, ys

@njit(cache=True, nogil=True)
def abs_diff_sums(s: np.ndarray):
    """
    For sorted s return a[i] = sum_j |s[i] - s[j]| in one pass.

    With s sorted every sign is known, so the row sum collapses to
    (2i - n + 2) * s[i] + (total - 2 * prefix[i]), prefix inclusive.
    """
    n = s.shape[0]
    total = 0.0
    for i in range(n):
        total += s[i]

    out = np.empty(n, dtype=np.float64)
    prefix = 0.0
    for i in range(n):
        prefix += s[i]
        out[i] = (2 * i - n + 2) * s[i] + (total - 2.0 * prefix)

    return out

@njit(cache=True, nogil=True)
def cross_term(xs: np.ndarray, ys: np.ndarray):
    """
    Bottom-up merge of the x-ordered positions by descending y.

    Whenever a right-block element r is emitted ahead of the rest of the
    left block, every remaining left element l has l < r in x-order and
    ys[l] < ys[r]. Row r then collects the count of those elements and
    their sums of x, y and x*y. Over all levels each such pair lands in
    exactly one row.

    Returns (iv1, iv2, iv3, iv4, order) where order lists positions by
    descending y.
    """
    n = xs.shape[0]

    iv1 = np.zeros(n, dtype=np.float64)
    iv2 = np.zeros(n, dtype=np.float64)
    iv3 = np.zeros(n, dtype=np.float64)
    iv4 = np.zeros(n, dtype=np.float64)

    # ping-pong buffers
    cur = np.empty(n, dtype=np.int64)
    nxt = np.empty(n, dtype=np.int64)
    for i in range(n):
        cur[i] = i

    csum_x = np.zeros(n + 1, dtype=np.float64)
    csum_y = np.zeros(n + 1, dtype=np.float64)
    csum_xy = np.zeros(n + 1, dtype=np.float64)

    width = 1
    while width < n:
        # running sums over the current order, range sums by subtraction
        for k in range(n):
            p = cur[k]
            csum_x[k + 1] = csum_x[k] + xs[p]
            csum_y[k + 1] = csum_y[k] + ys[p]
            csum_xy[k + 1] = csum_xy[k] + xs[p] * ys[p]

        k = 0
        for start in range(0, n, 2 * width):
            st1 = start
            e1 = min(start + width, n)
            st2 = e1
            e2 = min(start + 2 * width, n)

            while st1 < e1 and st2 < e2:
                left = cur[st1]
                right = cur[st2]
                if ys[left] >= ys[right]:
                    nxt[k] = left
                    st1 += 1
                else:
                    nxt[k] = right
                    st2 += 1
                    iv1[right] += e1 - st1
                    iv2[right] += csum_x[e1] - csum_x[st1]
                    iv3[right] += csum_y[e1] - csum_y[st1]
                    iv4[right] += csum_xy[e1] - csum_xy[st1]
                k += 1

            while st1 < e1:
                nxt[k] = cur[st1]
                st1 += 1
                k += 1
            while st2 < e2:
                nxt[k] = cur[st2]
                st2 += 1
                k += 1

        cur, nxt = nxt, cur
        width *= 2

    return iv1, iv2, iv3, iv4, cur

@njit(cache=True, nogil=True)
def dcov_sq(x: np.ndarray, y: np.ndarray):
    """
    Squared sample distance covariance (V-statistic) in O(n log n).
    Can come out as a tiny negative number when the true value is 0.
    """
    n = x.shape[0]

    # shift by the first value, a constant sample becomes exact zeros
    xc = np.empty(n, dtype=np.float64)
    yc = np.empty(n, dtype=np.float64)
    for i in range(n):
        xc[i] = x[i] - x[0]
        yc[i] = y[i] - y[0]

    order, xs, ys = sort_by_x(xc, yc)
    iv1, iv2, iv3, iv4, desc = cross_term(xs, ys)

    mean_x = 0.0
    mean_y = 0.0
    for i in range(n):
        mean_x += xc[i]
        mean_y += yc[i]
    mean_x /= n
    mean_y /= n

    covterm = 0.0
    for i in range(n):
        covterm += (xc[i] - mean_x) * (yc[i] - mean_y)
    covterm *= n

    c1 = 0.0
    c2 = 0.0
    c3 = 0.0
    c4 = 0.0
    for i in range(n):
        c1 += iv1[i] * xs[i] * ys[i]
        c2 += iv4[i]
        c3 += iv2[i] * ys[i]
        c4 += iv3[i] * xs[i]

    # sum over all pairs of |x_i - x_j| * |y_i - y_j|
    d = 4.0 * ((c1 + c2) - (c3 + c4)) - 2.0 * covterm

    ax = abs_diff_sums(xs)

    # y row sums, computed in ascending-y order then scattered back
    y_asc = np.empty(n, dtype=np.float64)
    for i in range(n):
        y_asc[i] = ys[desc[n - 1 - i]]
    by_asc = abs_diff_sums(y_asc)
    by = np.empty(n, dtype=np.float64)
    for i in range(n):
        by[desc[n - 1 - i]] = by_asc[i]

    term2 = 0.0
    sum_ax = 0.0
    sum_by = 0.0
    for i in range(n):
        term2 += ax[i] * by[i]
        sum_ax += ax[i]
        sum_by += by[i]

    # floats so n**4 cannot overflow
    n2 = float(n) * n
    n3 = n2 * n
    n4 = n3 * n

    return d / n2 - 2.0 * term2 / n3 + sum_ax * sum_by / n4
