"""
Workspace
==================
A single pre-allocated buffer holding all the arrays needed during one run of NEWUOA.
The arrays are views into the buffer, sized once from n and npt, and are updated
in place for the whole run.


This program is free software: you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
GNU General Public License for more details.

You should have received a copy of the GNU General Public License
along with this program. If not, see <http://www.gnu.org/licenses/>.

The development of this software was sponsored by NAG Ltd. (http://www.nag.co.uk)
and the EPSRC Centre For Doctoral Training in Industrially Focused Mathematical
Modelling (EP/L015803/1) at the University of Oxford. Please contact NAG for
alternative licensing.

Copyright 2017, Lindon Roberts

"""
import numpy as np

__all__ = ['Workspace']


class Workspace:
    def __init__(self, n, npt):
        self.n = None
        self.npt = None
        self.buffer = None
        self.resize(n, npt)

    @staticmethod
    def required_size(n, npt):
        """
        Number of floats in the buffer: xbase, xpt, fval, gq, hq, kkt_inv, w.

        The inverse KKT matrix is stored as a dense (npt+n+1)x(npt+n+1) array, so this is not
        the size of Powell's Fortran work array, which keeps it in factored form
        (see powell_size). The two are not interchangeable.
        """
        m = npt + n + 1
        return n + npt * n + npt + n + n * n + m * m + m

    @staticmethod
    def powell_size(n, npt):
        # Length of the work array W in Powell's NEWUOA
        return (npt + 13) * (npt + n) + 3 * n * (n + 3) // 2

    def resize(self, n, npt):
        # Returns True if the arrays had to be re-carved (i.e. n or npt changed)
        if n == self.n and npt == self.npt:
            return False
        size = Workspace.required_size(n, npt)
        if self.buffer is None or self.buffer.size != size:
            self.buffer = np.zeros((size,))
        self.n = n
        self.npt = npt
        self._carve()
        return True

    def clear(self):
        self.buffer[:] = 0.0

    def _carve(self):
        n, npt = self.n, self.npt
        m = npt + n + 1
        offset = 0

        def take(shape):
            nonlocal offset
            size = int(np.prod(shape))
            view = self.buffer[offset:offset + size].reshape(shape)
            offset += size
            return view

        self.xbase = take((n,))  # base point (absolute coordinates)
        self.xpt = take((npt, n))  # interpolation points, relative to xbase
        self.fval = take((npt,))  # objective value at each xpt(+xbase)
        self.gq = take((n,))  # model gradient at xbase
        self.hq = take((n, n))  # model Hessian
        self.kkt_inv = take((m, m))  # inverse of the KKT matrix of the interpolation problem
        self.w = take((m,))  # scratch vector
        assert offset == self.buffer.size, "Workspace layout does not match required_size"
